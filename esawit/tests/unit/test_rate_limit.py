from __future__ import annotations

import pytest

from esawit.core.errors import RateLimitUnavailableError
from esawit.services.rate_limit import RateLimiter, window_seconds
from esawit.tests.utils.fakes import FailingRedis, FakeRedis


@pytest.mark.asyncio
async def test_six_calls_with_limit_five_reject_only_the_last(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)

    results = [await limiter.check_limit("ip1", 5, 1000) for _ in range(6)]

    assert results == [True, True, True, True, True, False]


@pytest.mark.asyncio
async def test_exactly_limit_calls_are_allowed(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)

    allowed = [await limiter.check_limit("client-a", 100, 900_000) for _ in range(100)]

    assert all(allowed)
    assert await limiter.check_limit("client-a", 100, 900_000) is False


@pytest.mark.asyncio
async def test_remaining_tracks_increments_and_never_goes_negative(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)
    assert await limiter.get_remaining("ip2", 3) == 3

    for used in range(1, 4):
        await limiter.check_limit("ip2", 3, 60_000)
        assert await limiter.get_remaining("ip2", 3) == 3 - used

    await limiter.check_limit("ip2", 3, 60_000)
    assert await limiter.get_remaining("ip2", 3) == 0


@pytest.mark.asyncio
async def test_counter_expiry_is_set_once_per_window(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)

    await limiter.check_limit("ip3", 5, 1500)
    assert await fake_redis.ttl("rate_limit:ip3") == 2
    fake_redis.advance(1)
    await limiter.check_limit("ip3", 5, 1500)

    # A second increment must not push the window end further out.
    assert await fake_redis.ttl("rate_limit:ip3") == 1


@pytest.mark.asyncio
async def test_window_rollover_resets_the_count(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)
    for _ in range(2):
        await limiter.check_limit("ip4", 2, 1000)
    assert await limiter.check_limit("ip4", 2, 1000) is False

    fake_redis.advance(1)

    assert await limiter.check_limit("ip4", 2, 1000) is True
    assert await limiter.get_remaining("ip4", 2) == 1


@pytest.mark.asyncio
async def test_identifiers_are_counted_independently(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)
    await limiter.check_limit("ip5", 1, 1000)

    assert await limiter.check_limit("ip5", 1, 1000) is False
    assert await limiter.check_limit("ip6", 1, 1000) is True


@pytest.mark.asyncio
async def test_check_reports_remaining_and_reset(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)

    decision = await limiter.check("ip7", 10, 900_000)

    assert decision.allowed is True
    assert decision.limit == 10
    assert decision.remaining == 9
    assert decision.reset_after_s == 900


@pytest.mark.asyncio
async def test_reset_clears_the_counter(fake_redis: FakeRedis) -> None:
    limiter = RateLimiter(fake_redis)
    await limiter.check_limit("ip8", 1, 1000)

    await limiter.reset("ip8")

    assert await limiter.check_limit("ip8", 1, 1000) is True


@pytest.mark.asyncio
async def test_store_failure_propagates_to_caller() -> None:
    limiter = RateLimiter(FailingRedis())

    with pytest.raises(RateLimitUnavailableError):
        await limiter.check_limit("ip9", 5, 1000)
    with pytest.raises(RateLimitUnavailableError):
        await limiter.get_remaining("ip9", 5)


def test_window_seconds_rounds_up() -> None:
    assert window_seconds(1000) == 1
    assert window_seconds(1001) == 2
    assert window_seconds(1) == 1
    assert window_seconds(900_000) == 900
