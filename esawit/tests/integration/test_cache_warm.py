from __future__ import annotations

import pytest

from esawit.persistence.db import Database
from esawit.services.cache import CacheManager
from esawit.tests.utils.factories import create_user_graph
from esawit.tests.utils.fakes import FakeRedis


@pytest.mark.asyncio
async def test_warm_cache_populates_user_namespaces(database: Database, fake_redis: FakeRedis) -> None:
    user_id = await create_user_graph(database, plan="PREMIUM")
    cache = CacheManager(fake_redis, database=database)

    assert await cache.warm_cache(user_id) is True

    user = await cache.get_user(user_id)
    assert user["id"] == user_id
    assert "password_hash" not in user
    assert user["subscription"]["plan"] == "PREMIUM"

    stats = await cache.get_dashboard_stats(user_id)
    assert stats == {
        "total_plantations": 1,
        "total_workers": 1,
        "total_tasks": 2,
        "completed_tasks": 1,
        "pending_tasks": 1,
        "total_reports": 2,
        "unread_notifications": 1,
        "subscription_plan": "PREMIUM",
        "subscription_status": "ACTIVE",
    }
    workers = await cache.get_workers(user_id)
    assert workers[0]["salary"] == 3500000.0
    assert len(await cache.get_plantations(user_id)) == 1
    assert len(await cache.get_tasks(user_id)) == 2
    assert len(await cache.get_reports(user_id)) == 2


@pytest.mark.asyncio
async def test_warm_cache_for_unknown_user_writes_nothing(database: Database, fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis, database=database)

    assert await cache.warm_cache("missing") is False
    assert await fake_redis.dbsize() == 0


@pytest.mark.asyncio
async def test_warmed_entries_are_dropped_by_user_invalidation(
    database: Database, fake_redis: FakeRedis
) -> None:
    user_id = await create_user_graph(database)
    cache = CacheManager(fake_redis, database=database)
    await cache.warm_cache(user_id)

    await cache.invalidate_user_cache(user_id)

    assert await fake_redis.dbsize() == 0
