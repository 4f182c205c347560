from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

from esawit.core.errors import RateLimitUnavailableError


logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "rate_limit"


@dataclass(frozen=True)
class RateLimitDecision:
    # Outcome of one counted request plus the hints exposed as response headers.
    allowed: bool
    limit: int
    remaining: int
    reset_after_s: int


def window_seconds(window_ms: int) -> int:
    # Store expiries are whole seconds; round up and never go below one.
    return max(1, math.ceil(window_ms / 1000))


class RateLimiter:
    """Fixed-window request counter keyed by client identifier.

    Each window starts on the first counted request and lasts ``window_ms``;
    the counter disappears with its expiry, which resets the count to zero.
    Store failures surface as :class:`RateLimitUnavailableError` so the caller
    decides between failing open and failing closed.
    """

    def __init__(self, redis: Redis, *, prefix: str = DEFAULT_PREFIX) -> None:
        self._redis = redis
        self._prefix = prefix

    def key_for(self, identifier: str) -> str:
        return f"{self._prefix}:{identifier}"

    async def check_limit(self, identifier: str, limit: int, window_ms: int) -> bool:
        key = self.key_for(identifier)
        try:
            # SET NX only succeeds on the first request of a window, so the expiry
            # is attached exactly once and always together with the increment.
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=window_seconds(window_ms), nx=True)
                pipe.incr(key)
                _, current = await pipe.execute()
        except RedisError as exc:
            logger.warning("rate_limit_store_unavailable identifier=%s", identifier, exc_info=exc)
            raise RateLimitUnavailableError("Rate limit store unavailable") from exc
        return int(current) <= limit

    async def get_remaining(self, identifier: str, limit: int) -> int:
        try:
            current = await self._redis.get(self.key_for(identifier))
        except RedisError as exc:
            logger.warning("rate_limit_store_unavailable identifier=%s", identifier, exc_info=exc)
            raise RateLimitUnavailableError("Rate limit store unavailable") from exc
        count = int(current) if current else 0
        return max(0, limit - count)

    async def check(self, identifier: str, limit: int, window_ms: int) -> RateLimitDecision:
        # Count the request and collect the remaining budget and reset hint.
        allowed = await self.check_limit(identifier, limit, window_ms)
        remaining = await self.get_remaining(identifier, limit)
        try:
            ttl = await self._redis.ttl(self.key_for(identifier))
        except RedisError as exc:
            raise RateLimitUnavailableError("Rate limit store unavailable") from exc
        reset_after_s = int(ttl) if ttl is not None and int(ttl) > 0 else window_seconds(window_ms)
        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=remaining,
            reset_after_s=reset_after_s,
        )

    async def reset(self, identifier: str) -> None:
        try:
            await self._redis.delete(self.key_for(identifier))
        except RedisError as exc:
            raise RateLimitUnavailableError("Rate limit store unavailable") from exc
