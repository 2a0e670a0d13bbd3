"""Tests for the fixed-window rate limiter and the cache primitives it uses."""

import pytest

from app.core.errors import ExtractionFailure, RateLimited
from app.services.rate_limiter import RateLimiter


async def test_window_allows_max_requests(rate_limiter, fake_redis):
    counts = [await rate_limiter.check("analyze", "1.2.3.4") for _ in range(10)]

    assert counts == list(range(1, 11))
    assert fake_redis.ttls["ratelimit:analyze:1.2.3.4"] == 900


async def test_request_over_limit_is_rejected(rate_limiter):
    for _ in range(10):
        await rate_limiter.check("analyze", "1.2.3.4")

    with pytest.raises(RateLimited) as exc:
        await rate_limiter.check("analyze", "1.2.3.4")

    assert exc.value.status_code == 429
    assert exc.value.retry_after == 900


async def test_scopes_and_identities_are_independent(cache):
    limiter = RateLimiter(cache, max_requests=1, window_seconds=60)
    await limiter.check("analyze", "a")

    assert await limiter.check("ask", "a") == 1
    assert await limiter.check("analyze", "b") == 1
    with pytest.raises(RateLimited):
        await limiter.check("analyze", "a")


async def test_cache_outage_fails_open(rate_limiter, fake_redis):
    fake_redis.fail_on = {"incr"}
    assert await rate_limiter.check("analyze", "1.2.3.4") == 0


async def test_staged_upload_round_trip(cache, fake_redis):
    async with cache.staged_upload("owner-1", b"%PDF-1.7 bytes") as key:
        assert key.startswith("upload:owner-1:")
        assert fake_redis.ttls[key] == 3600
        assert await cache.read_staged(key) == b"%PDF-1.7 bytes"

    assert key not in fake_redis.data
    with pytest.raises(ExtractionFailure):
        await cache.read_staged(key)


async def test_unreadable_cache_entry_is_ignored(cache, fake_redis):
    fake_redis.data["analysis:x"] = "{not json"
    assert await cache.get_json("analysis:x") is None


async def test_counter_without_expiry_gets_one_on_next_hit(rate_limiter, fake_redis):
    key = "ratelimit:analyze:c1"
    fake_redis.fail_on = {"expire"}
    assert await rate_limiter.check("analyze", "c1") == 0
    assert fake_redis.ttls.get(key) is None

    fake_redis.fail_on = set()
    assert await rate_limiter.check("analyze", "c1") == 2
    assert fake_redis.ttls[key] == 900


async def test_existing_expiry_is_not_extended(rate_limiter, fake_redis):
    key = "ratelimit:analyze:c1"
    await rate_limiter.check("analyze", "c1")
    fake_redis.ttls[key] = 42

    await rate_limiter.check("analyze", "c1")

    assert fake_redis.ttls[key] == 42
