"""Tests for the fixed-window signed URL rate limiter."""

import pytest

from convai_relay.services.rate_limiter import (
    FixedWindowRateLimiter,
    InMemoryRateLimiterStore,
    RateLimitResult,
    RedisRateLimiterStore,
)

T0 = 1_700_000_000_000.0


class _FakeRedis:
    """Just enough of redis.asyncio for the store (INCR/PEXPIRE/PTTL/DEL/SCAN)."""

    def __init__(self):
        self.values = {}
        self.expires_at = {}
        self.now_ms = T0

    def _expire_due(self, key):
        deadline = self.expires_at.get(key)
        if deadline is not None and self.now_ms >= deadline:
            self.values.pop(key, None)
            self.expires_at.pop(key, None)

    async def incr(self, key):
        self._expire_due(key)
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def pexpire(self, key, ms):
        self.expires_at[key] = self.now_ms + ms
        return True

    async def pttl(self, key):
        self._expire_due(key)
        if key not in self.values:
            return -2
        if key not in self.expires_at:
            return -1
        return int(self.expires_at[key] - self.now_ms)

    async def delete(self, key):
        self.values.pop(key, None)
        self.expires_at.pop(key, None)

    async def scan_iter(self, match=None):
        prefix = (match or "").rstrip("*")
        for key in list(self.values):
            if key.startswith(prefix):
                yield key


@pytest.mark.asyncio
async def test_sixty_requests_allowed_sixty_first_exceeded():
    limiter = FixedWindowRateLimiter(window_ms=60_000, max_requests=60)

    for i in range(60):
        result = await limiter.check("1.2.3.4", now_ms=T0 + i)
        assert result.exceeded is False

    result = await limiter.check("1.2.3.4", now_ms=T0 + 100)
    assert result.exceeded is True
    assert result.count == 61
    assert result.reset_at == T0 + 60_000


@pytest.mark.asyncio
async def test_window_restarts_strictly_after_reset_at():
    limiter = FixedWindowRateLimiter(window_ms=60_000, max_requests=2)
    for _ in range(3):
        await limiter.check("client", now_ms=T0)

    # Exactly at reset_at the old window still applies
    at_reset = await limiter.check("client", now_ms=T0 + 60_000)
    assert at_reset.exceeded is True
    assert at_reset.count == 4

    after = await limiter.check("client", now_ms=T0 + 60_001)
    assert after.exceeded is False
    assert after.count == 1
    assert after.reset_at == T0 + 60_001 + 60_000


@pytest.mark.asyncio
async def test_keys_are_independent():
    limiter = FixedWindowRateLimiter(window_ms=1_000, max_requests=1)
    assert (await limiter.check("a", now_ms=T0)).exceeded is False
    assert (await limiter.check("a", now_ms=T0)).exceeded is True
    assert (await limiter.check("b", now_ms=T0)).exceeded is False


@pytest.mark.asyncio
async def test_reset_clears_windows():
    store = InMemoryRateLimiterStore()
    limiter = FixedWindowRateLimiter(store, window_ms=1_000, max_requests=1)
    await limiter.check("a", now_ms=T0)
    await limiter.check("b", now_ms=T0)

    await limiter.reset("a")
    assert (await limiter.check("a", now_ms=T0)).count == 1
    assert (await limiter.check("b", now_ms=T0)).count == 2

    await limiter.reset()
    assert (await limiter.check("b", now_ms=T0)).count == 1


@pytest.mark.asyncio
async def test_injected_clock_is_used():
    now = {"ms": T0}
    limiter = FixedWindowRateLimiter(window_ms=10, max_requests=1, clock=lambda: now["ms"])
    assert (await limiter.check("k")).reset_at == T0 + 10
    now["ms"] = T0 + 11
    assert (await limiter.check("k")).count == 1


def test_retry_after_rounds_up_to_whole_seconds():
    result = RateLimitResult(exceeded=True, reset_at=T0 + 1_500, count=61, limit=60)
    assert result.retry_after_seconds(T0) == 2
    assert result.retry_after_seconds(T0 + 5_000) == 1
    assert result.remaining == 0


@pytest.mark.asyncio
async def test_redis_store_shares_window_between_limiters():
    redis = _FakeRedis()
    first = FixedWindowRateLimiter(RedisRateLimiterStore(redis), window_ms=60_000, max_requests=2)
    second = FixedWindowRateLimiter(RedisRateLimiterStore(redis), window_ms=60_000, max_requests=2)

    assert (await first.check("ip", now_ms=T0)).count == 1
    assert (await second.check("ip", now_ms=T0)).count == 2
    result = await first.check("ip", now_ms=T0)
    assert result.exceeded is True
    assert result.reset_at == T0 + 60_000


@pytest.mark.asyncio
async def test_redis_store_starts_new_window_after_expiry():
    redis = _FakeRedis()
    limiter = FixedWindowRateLimiter(RedisRateLimiterStore(redis), window_ms=1_000, max_requests=1)
    await limiter.check("ip", now_ms=T0)
    await limiter.check("ip", now_ms=T0)

    redis.now_ms = T0 + 1_000
    result = await limiter.check("ip", now_ms=T0 + 1_000)
    assert result.count == 1
    assert result.exceeded is False


@pytest.mark.asyncio
async def test_redis_store_rearms_missing_expiry():
    redis = _FakeRedis()
    store = RedisRateLimiterStore(redis, prefix="t:")
    redis.values["t:ip"] = 5

    window = await store.hit("ip", T0, 1_000)
    assert window.count == 6
    assert window.reset_at == T0 + 1_000
    assert redis.expires_at["t:ip"] == T0 + 1_000


@pytest.mark.asyncio
async def test_redis_store_reset_all_only_touches_prefix():
    redis = _FakeRedis()
    redis.values["other"] = 1
    store = RedisRateLimiterStore(redis, prefix="t:")
    await store.hit("a", T0, 1_000)
    await store.hit("b", T0, 1_000)

    await store.reset()
    assert set(redis.values) == {"other"}
