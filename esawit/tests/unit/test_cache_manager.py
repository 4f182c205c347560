from __future__ import annotations

import pytest

from esawit.services.cache import CacheManager, CacheTTLs, generate_key
from esawit.tests.utils.fakes import FailingRedis, FakeRedis


def test_generate_key_appends_canonical_params() -> None:
    assert generate_key("user", "u1") == "user:u1"
    assert generate_key("plantations", "u1", {"status": "ACTIVE"}) == 'plantations:u1:{"status":"ACTIVE"}'
    # Parameter order must not produce distinct entries.
    assert generate_key("tasks", "u1", {"b": 2, "a": 1}) == generate_key("tasks", "u1", {"a": 1, "b": 2})
    assert generate_key("tasks", "u1", {}) == "tasks:u1"


@pytest.mark.asyncio
async def test_set_then_get_returns_value_until_ttl_passes(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)

    await cache.set("k", {"a": 1}, 10)
    assert await cache.get("k") == {"a": 1}

    fake_redis.advance(9)
    assert await cache.get("k") == {"a": 1}

    fake_redis.advance(1)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_set_without_ttl_uses_default(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis, ttls=CacheTTLs(default=60))

    await cache.set("k", [1, 2, 3])

    assert await fake_redis.ttl("k") == 60


@pytest.mark.asyncio
async def test_non_positive_ttl_is_rejected_not_defaulted(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis, ttls=CacheTTLs(default=3600))

    with pytest.raises(ValueError, match="ttl must be positive"):
        await cache.set("k", 1, 0)
    with pytest.raises(ValueError):
        await cache.set("k", 1, -5)
    with pytest.raises(ValueError):
        await cache.increment_rate_limit("ip", 0)

    assert await fake_redis.dbsize() == 0
    await cache.set("k", 1, 1)
    assert await fake_redis.ttl("k") == 1


@pytest.mark.asyncio
async def test_entity_setters_use_namespace_ttls(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)

    await cache.set_user("u1", {"id": "u1"})
    await cache.set_dashboard_stats("u1", {"total_tasks": 2})
    await cache.set_session("s1", {"user_id": "u1"})
    await cache.set_tasks("u1", [], {"status": "PENDING"})

    assert await fake_redis.ttl("user:u1") == 1800
    assert await fake_redis.ttl("dashboard_stats:u1") == 300
    assert await fake_redis.ttl("session:s1") == 86400
    assert await fake_redis.ttl('tasks:u1:{"status":"PENDING"}') == 900
    assert await cache.get_tasks("u1", {"status": "PENDING"}) == []
    assert await cache.get_session("s1") == {"user_id": "u1"}


@pytest.mark.asyncio
async def test_set_after_delete_is_visible(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)
    await cache.set("k", "old", 60)

    await cache.delete("k")
    assert await cache.exists("k") is False
    await cache.set("k", "v", 60)

    assert await cache.get("k") == "v"


@pytest.mark.asyncio
async def test_undecodable_entry_is_a_miss(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)
    await fake_redis.set("broken", "{not json")

    assert await cache.get("broken") is None


@pytest.mark.asyncio
async def test_filters_select_distinct_entries(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)

    await cache.set_plantations("u1", [{"id": 1}], {"status": "ACTIVE"})

    assert await cache.get_plantations("u1", {"status": "ACTIVE"}) == [{"id": 1}]
    assert await cache.get_plantations("u1", {"status": "INACTIVE"}) is None
    assert await cache.get_plantations("u1") is None


@pytest.mark.asyncio
async def test_invalidate_user_then_get_is_a_miss(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)

    await cache.invalidate_user("u1")
    assert await cache.get_user("u1") is None

    await cache.set_user("u1", {"id": "u1", "name": "Budi"})
    await cache.invalidate_user("u1")
    assert await cache.get_user("u1") is None


@pytest.mark.asyncio
async def test_invalidate_pattern_removes_filtered_variants_only(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)
    await cache.set_plantations("u1", ["all"])
    await cache.set_plantations("u1", ["active"], {"status": "ACTIVE"})
    await cache.set_plantations("u1", ["riau"], {"location": "Riau"})
    await cache.set_plantations("u10", ["other"])
    await cache.set_workers("u1", ["w"])

    await cache.invalidate_plantations("u1")

    assert await cache.get_plantations("u1") is None
    assert await cache.get_plantations("u1", {"status": "ACTIVE"}) is None
    assert await cache.get_plantations("u1", {"location": "Riau"}) is None
    assert await cache.get_plantations("u10") == ["other"]
    assert await cache.get_workers("u1") == ["w"]


@pytest.mark.asyncio
async def test_invalidate_user_cache_clears_every_user_namespace(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)
    await cache.set_user("u1", {"id": "u1"})
    await cache.set_plantations("u1", [], {"page": 2})
    await cache.set_workers("u1", [])
    await cache.set_tasks("u1", [])
    await cache.set_reports("u1", [], {"type": "HARVEST"})
    await cache.set_dashboard_stats("u1", {})
    await cache.set_user("u2", {"id": "u2"})

    await cache.invalidate_user_cache("u1")

    assert await fake_redis.dbsize() == 1
    assert await cache.get_user("u2") == {"id": "u2"}


@pytest.mark.asyncio
async def test_rate_limit_counter_expires_with_window(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)

    assert await cache.get_rate_limit("ip") == 0
    assert await cache.increment_rate_limit("ip", 5) == 1
    assert await cache.increment_rate_limit("ip", 5) == 2
    assert await cache.get_rate_limit("ip") == 2

    fake_redis.advance(5)
    assert await cache.get_rate_limit("ip") == 0


@pytest.mark.asyncio
async def test_store_failures_are_absorbed() -> None:
    failing = FailingRedis()
    cache = CacheManager(failing)

    assert await cache.get("k") is None
    await cache.set("k", {"a": 1}, 10)
    await cache.delete("k")
    assert await cache.exists("k") is False
    assert await cache.invalidate_pattern("plantations", "u1") == 0
    assert await cache.get_rate_limit("ip") == 0
    assert await cache.increment_rate_limit("ip") == 0
    assert await cache.get_cache_stats() is None
    assert await cache.health_check() is False
    await cache.invalidate_user_cache("u1")
    assert failing.calls >= 9


@pytest.mark.asyncio
async def test_load_through_populates_on_miss(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)
    calls = []

    async def loader() -> dict[str, int]:
        calls.append(1)
        return {"value": 42}

    assert await cache.load_through("computed", loader, 30) == {"value": 42}
    assert await cache.load_through("computed", loader, 30) == {"value": 42}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_load_through_falls_back_to_loader_when_store_is_down() -> None:
    cache = CacheManager(FailingRedis())

    async def loader() -> str:
        return "fresh"

    assert await cache.load_through("computed", loader) == "fresh"


@pytest.mark.asyncio
async def test_cache_stats_and_health(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)
    await cache.set("k", 1, 10)

    stats = await cache.get_cache_stats()

    assert stats is not None
    assert stats["db_size"] == 1
    assert stats["used_memory_human"] == "1.00K"
    assert await cache.health_check() is True


@pytest.mark.asyncio
async def test_warm_cache_requires_database(fake_redis: FakeRedis) -> None:
    cache = CacheManager(fake_redis)

    with pytest.raises(RuntimeError):
        await cache.warm_cache("u1")
