from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from typing import AsyncIterator

from redis.asyncio import Redis
from redis.exceptions import RedisError

from esawit.core.config import Settings, get_settings
from esawit.persistence.db import Database
from esawit.persistence.redis import close_redis, create_redis, redis_location
from esawit.services.backup import DisasterRecoveryManager
from esawit.services.cache import CacheManager, CacheTTLs
from esawit.services.compliance import ComplianceManager
from esawit.services.rate_limit import RateLimiter


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Store handles and managers built once per process.

    The entry point (API lifespan or script) owns connect/disconnect; nothing
    below it opens its own store connections.
    """

    settings: Settings
    database: Database
    redis: Redis
    rate_limiter: RateLimiter
    cache: CacheManager
    disaster_recovery: DisasterRecoveryManager
    compliance: ComplianceManager

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        database: Database | None = None,
        redis: Redis | None = None,
    ) -> ServiceContainer:
        settings = settings or get_settings()
        database = database or Database.from_settings(settings)
        redis = redis if redis is not None else create_redis(settings.redis_url)
        cache = CacheManager(redis, ttls=CacheTTLs.from_settings(settings), database=database)
        return cls(
            settings=settings,
            database=database,
            redis=redis,
            rate_limiter=RateLimiter(redis),
            cache=cache,
            disaster_recovery=DisasterRecoveryManager.from_settings(settings, database=database),
            compliance=ComplianceManager.from_settings(settings, database, cache=cache),
        )

    async def connect(self) -> None:
        await self.database.connect()
        try:
            await self.redis.ping()
        except RedisError as exc:
            # The cache degrades to misses; rate limiting applies rl_fail_mode.
            logger.warning(
                "redis_unavailable_at_startup location=%s",
                redis_location(self.settings.redis_url),
                exc_info=exc,
            )
        logger.info("services_connected app=%s", self.settings.app_name)

    async def disconnect(self) -> None:
        await self.database.disconnect()
        await close_redis(self.redis)
        logger.info("services_disconnected app=%s", self.settings.app_name)


@asynccontextmanager
async def open_services(settings: Settings | None = None) -> AsyncIterator[ServiceContainer]:
    services = ServiceContainer.build(settings)
    await services.connect()
    try:
        yield services
    finally:
        await services.disconnect()
