from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import func, select

from esawit.core.config import Settings
from esawit.core.serialization import dumps, row_to_dict, stable_json, to_jsonable
from esawit.domain.models import (
    Notification,
    Plantation,
    Report,
    Subscription,
    Task,
    User,
    Worker,
)

if TYPE_CHECKING:
    from esawit.persistence.db import Database


logger = logging.getLogger(__name__)

# Cache namespaces are a stable contract shared with the web tier.
USER_PREFIX = "user"
PLANTATIONS_PREFIX = "plantations"
WORKERS_PREFIX = "workers"
TASKS_PREFIX = "tasks"
REPORTS_PREFIX = "reports"
DASHBOARD_STATS_PREFIX = "dashboard_stats"
SESSION_PREFIX = "session"
RATE_LIMIT_PREFIX = "rate_limit"

# Never cached: credential material on the user row.
_USER_EXCLUDED_FIELDS = frozenset({"password_hash"})


@dataclass(frozen=True)
class CacheTTLs:
    # Default TTLs in seconds per entity namespace.
    default: int = 3600
    user: int = 1800
    plantation: int = 7200
    worker: int = 1800
    task: int = 900
    report: int = 3600
    stats: int = 300
    session: int = 86400
    rate_limit: int = 900

    @classmethod
    def from_settings(cls, settings: Settings) -> CacheTTLs:
        return cls(
            default=settings.cache_default_ttl_s,
            user=settings.cache_user_ttl_s,
            plantation=settings.cache_plantation_ttl_s,
            worker=settings.cache_worker_ttl_s,
            task=settings.cache_task_ttl_s,
            report=settings.cache_report_ttl_s,
            stats=settings.cache_stats_ttl_s,
            session=settings.cache_session_ttl_s,
            rate_limit=settings.cache_rate_limit_ttl_s,
        )


def generate_key(prefix: str, identifier: str, params: dict[str, Any] | None = None) -> str:
    # Filters become a canonical JSON suffix so equal filters share one entry.
    key = f"{prefix}:{identifier}"
    if params:
        key = f"{key}:{stable_json(params)}"
    return key


def _expiry_seconds(ttl: int | None, default: int) -> int:
    # Redis rejects non-positive expiries; None means the namespace default.
    if ttl is None:
        return default
    if ttl <= 0:
        raise ValueError(f"cache ttl must be positive, got {ttl}")
    return ttl


class CacheManager:
    """Namespaced JSON cache over Redis.

    The cache is never authoritative: every store or serialization failure is
    logged and turned into a miss (reads) or a no-op (writes), so callers can
    always fall back to the relational store.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        ttls: CacheTTLs | None = None,
        database: Database | None = None,
    ) -> None:
        self._redis = redis
        self._ttls = ttls or CacheTTLs()
        self._database = database

    @property
    def ttls(self) -> CacheTTLs:
        return self._ttls

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            logger.warning("cache_get_failed key=%s", key, exc_info=exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.warning("cache_decode_failed key=%s", key, exc_info=exc)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expiry = _expiry_seconds(ttl, self._ttls.default)
        try:
            payload = dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning("cache_encode_failed key=%s", key, exc_info=exc)
            return
        try:
            await self._redis.set(key, payload, ex=expiry)
        except RedisError as exc:
            logger.warning("cache_set_failed key=%s", key, exc_info=exc)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            logger.warning("cache_delete_failed key=%s", key, exc_info=exc)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._redis.exists(key))
        except RedisError as exc:
            logger.warning("cache_exists_failed key=%s", key, exc_info=exc)
            return False

    async def invalidate_pattern(self, prefix: str, identifier: str) -> int:
        # Drop the unfiltered entry and every filtered variant. SCAN walks the whole
        # keyspace, so cost grows with store size rather than with matches.
        base = generate_key(prefix, identifier)
        deleted = 0
        try:
            keys = [base]
            async for key in self._redis.scan_iter(match=f"{base}:*", count=500):
                keys.append(key)
            deleted = int(await self._redis.delete(*keys))
        except RedisError as exc:
            logger.warning("cache_invalidate_failed pattern=%s:*", base, exc_info=exc)
        return deleted

    # User
    async def get_user(self, user_id: str) -> Any | None:
        return await self.get(generate_key(USER_PREFIX, user_id))

    async def set_user(self, user_id: str, user: Any) -> None:
        await self.set(generate_key(USER_PREFIX, user_id), user, self._ttls.user)

    async def invalidate_user(self, user_id: str) -> None:
        await self.delete(generate_key(USER_PREFIX, user_id))

    # Plantations
    async def get_plantations(self, user_id: str, filters: dict[str, Any] | None = None) -> Any | None:
        return await self.get(generate_key(PLANTATIONS_PREFIX, user_id, filters))

    async def set_plantations(
        self, user_id: str, plantations: Any, filters: dict[str, Any] | None = None
    ) -> None:
        await self.set(generate_key(PLANTATIONS_PREFIX, user_id, filters), plantations, self._ttls.plantation)

    async def invalidate_plantations(self, user_id: str) -> None:
        await self.invalidate_pattern(PLANTATIONS_PREFIX, user_id)

    # Workers
    async def get_workers(self, user_id: str, filters: dict[str, Any] | None = None) -> Any | None:
        return await self.get(generate_key(WORKERS_PREFIX, user_id, filters))

    async def set_workers(self, user_id: str, workers: Any, filters: dict[str, Any] | None = None) -> None:
        await self.set(generate_key(WORKERS_PREFIX, user_id, filters), workers, self._ttls.worker)

    async def invalidate_workers(self, user_id: str) -> None:
        await self.invalidate_pattern(WORKERS_PREFIX, user_id)

    # Tasks
    async def get_tasks(self, user_id: str, filters: dict[str, Any] | None = None) -> Any | None:
        return await self.get(generate_key(TASKS_PREFIX, user_id, filters))

    async def set_tasks(self, user_id: str, tasks: Any, filters: dict[str, Any] | None = None) -> None:
        await self.set(generate_key(TASKS_PREFIX, user_id, filters), tasks, self._ttls.task)

    async def invalidate_tasks(self, user_id: str) -> None:
        await self.invalidate_pattern(TASKS_PREFIX, user_id)

    # Reports
    async def get_reports(self, user_id: str, filters: dict[str, Any] | None = None) -> Any | None:
        return await self.get(generate_key(REPORTS_PREFIX, user_id, filters))

    async def set_reports(self, user_id: str, reports: Any, filters: dict[str, Any] | None = None) -> None:
        await self.set(generate_key(REPORTS_PREFIX, user_id, filters), reports, self._ttls.report)

    async def invalidate_reports(self, user_id: str) -> None:
        await self.invalidate_pattern(REPORTS_PREFIX, user_id)

    # Dashboard stats
    async def get_dashboard_stats(self, user_id: str) -> Any | None:
        return await self.get(generate_key(DASHBOARD_STATS_PREFIX, user_id))

    async def set_dashboard_stats(self, user_id: str, stats: Any) -> None:
        await self.set(generate_key(DASHBOARD_STATS_PREFIX, user_id), stats, self._ttls.stats)

    async def invalidate_dashboard_stats(self, user_id: str) -> None:
        await self.delete(generate_key(DASHBOARD_STATS_PREFIX, user_id))

    # Sessions
    async def get_session(self, session_id: str) -> Any | None:
        return await self.get(generate_key(SESSION_PREFIX, session_id))

    async def set_session(self, session_id: str, session: Any) -> None:
        await self.set(generate_key(SESSION_PREFIX, session_id), session, self._ttls.session)

    async def invalidate_session(self, session_id: str) -> None:
        await self.delete(generate_key(SESSION_PREFIX, session_id))

    # Rate-limit counters
    async def get_rate_limit(self, identifier: str) -> int:
        try:
            raw = await self._redis.get(generate_key(RATE_LIMIT_PREFIX, identifier))
        except RedisError as exc:
            logger.warning("cache_rate_limit_get_failed identifier=%s", identifier, exc_info=exc)
            return 0
        return int(raw) if raw else 0

    async def increment_rate_limit(self, identifier: str, window_s: int | None = None) -> int:
        key = generate_key(RATE_LIMIT_PREFIX, identifier)
        expiry = _expiry_seconds(window_s, self._ttls.rate_limit)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=expiry, nx=True)
                pipe.incr(key)
                _, current = await pipe.execute()
        except RedisError as exc:
            logger.warning("cache_rate_limit_incr_failed identifier=%s", identifier, exc_info=exc)
            return 0
        return int(current)

    async def warm_cache(self, user_id: str) -> bool:
        """Pre-populate every per-user entry from the relational store.

        Entries are written independently; a failure part way through leaves
        a partially warmed cache, which is safe because entries are always
        re-derivable. Returns False when the user does not exist or the load
        failed.
        """
        if self._database is None:
            raise RuntimeError("warm_cache requires a database handle")
        try:
            snapshot = await self._load_user_snapshot(user_id)
        except Exception as exc:  # noqa: BLE001 - warming is best-effort
            logger.warning("cache_warm_failed user_id=%s", user_id, exc_info=exc)
            return False
        if snapshot is None:
            logger.info("cache_warm_skipped user_id=%s reason=user_not_found", user_id)
            return False
        await asyncio.gather(
            self.set_user(user_id, snapshot["user"]),
            self.set_dashboard_stats(user_id, snapshot["dashboard_stats"]),
            self.set_plantations(user_id, snapshot["plantations"]),
            self.set_workers(user_id, snapshot["workers"]),
            self.set_tasks(user_id, snapshot["tasks"]),
            self.set_reports(user_id, snapshot["reports"]),
        )
        logger.info("cache_warmed user_id=%s", user_id)
        return True

    async def _load_user_snapshot(self, user_id: str) -> dict[str, Any] | None:
        assert self._database is not None
        async with self._database.session() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            subscription = (
                await session.execute(select(Subscription).where(Subscription.user_id == user_id))
            ).scalar_one_or_none()

            async def _rows(model: Any) -> list[dict[str, Any]]:
                result = await session.execute(
                    select(model).where(model.user_id == user_id).order_by(model.created_at.desc())
                )
                return [row_to_dict(row) for row in result.scalars().all()]

            async def _count(*criteria: Any) -> int:
                result = await session.execute(select(func.count()).where(*criteria))
                return int(result.scalar_one())

            plantations = await _rows(Plantation)
            workers = await _rows(Worker)
            tasks = await _rows(Task)
            reports = await _rows(Report)
            stats = {
                "total_plantations": len(plantations),
                "total_workers": len(workers),
                "total_tasks": len(tasks),
                "completed_tasks": sum(1 for task in tasks if task["status"] == "COMPLETED"),
                "pending_tasks": sum(1 for task in tasks if task["status"] == "PENDING"),
                "total_reports": len(reports),
                "unread_notifications": await _count(
                    Notification.user_id == user_id, Notification.is_read.is_(False)
                ),
                "subscription_plan": subscription.plan if subscription else "FREE",
                "subscription_status": subscription.status if subscription else "ACTIVE",
            }
            user_payload = row_to_dict(user, exclude=_USER_EXCLUDED_FIELDS)
            user_payload["subscription"] = row_to_dict(subscription) if subscription else None
        return to_jsonable(
            {
                "user": user_payload,
                "dashboard_stats": stats,
                "plantations": plantations,
                "workers": workers,
                "tasks": tasks,
                "reports": reports,
            }
        )

    async def invalidate_user_cache(self, user_id: str) -> None:
        # Each invalidation is idempotent, so ordering does not matter.
        await asyncio.gather(
            self.invalidate_user(user_id),
            self.invalidate_plantations(user_id),
            self.invalidate_workers(user_id),
            self.invalidate_tasks(user_id),
            self.invalidate_reports(user_id),
            self.invalidate_dashboard_stats(user_id),
        )

    async def get_cache_stats(self) -> dict[str, Any] | None:
        try:
            memory = await self._redis.info("memory")
            keyspace = await self._redis.info("keyspace")
            db_size = await self._redis.dbsize()
        except RedisError as exc:
            logger.warning("cache_stats_failed", exc_info=exc)
            return None
        return {
            "used_memory": memory.get("used_memory"),
            "used_memory_human": memory.get("used_memory_human"),
            "keyspace": keyspace,
            "db_size": int(db_size),
        }

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            logger.warning("cache_health_check_failed", exc_info=exc)
            return False

    async def load_through(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int | None = None,
    ) -> Any:
        # Serve from cache when present, otherwise load from the source and populate.
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        if value is not None:
            await self.set(key, value, ttl)
        return value
