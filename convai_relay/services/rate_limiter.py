"""Per-client fixed-window rate limiter for signed URL issuance.

Each client key gets a window of ``window_ms`` starting at its first request.
Requests inside the window increment the counter; a request arriving
strictly after ``reset_at`` opens a fresh window with ``count = 1``.  The
window is exceeded once ``count > max_requests``.

Window state lives behind a :class:`RateLimiterStore`:

- :class:`InMemoryRateLimiterStore` keeps a dict in the current process.
  Counters are lost on restart and are NOT shared between workers, so with
  N uvicorn workers a client effectively gets N x ``max_requests``.  Use it
  for single-process deployments only.
- :class:`RedisRateLimiterStore` keeps counters in Redis (``INCR`` +
  ``PEXPIRE``) so every worker sees the same window.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from convai_relay.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 60_000
DEFAULT_MAX_REQUESTS = 60


@dataclass
class RateLimitWindow:
    """Counter state for a single client key."""

    count: int
    reset_at: float  # epoch milliseconds


@dataclass(frozen=True)
class RateLimitResult:
    exceeded: bool
    reset_at: float  # epoch milliseconds
    count: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    def retry_after_seconds(self, now_ms: float) -> int:
        """Whole seconds until the window resets (at least 1 when exceeded)."""
        wait_ms = max(0.0, self.reset_at - now_ms)
        return max(1, int(-(-wait_ms // 1000)))


class RateLimiterStore(Protocol):
    """Applies one fixed-window hit for ``key`` and returns the resulting window."""

    async def hit(self, key: str, now_ms: float, window_ms: int) -> RateLimitWindow: ...

    async def reset(self, key: Optional[str] = None) -> None: ...


class InMemoryRateLimiterStore:
    """Process-local window map."""

    def __init__(self) -> None:
        self._windows: Dict[str, RateLimitWindow] = {}

    async def hit(self, key: str, now_ms: float, window_ms: int) -> RateLimitWindow:
        window = self._windows.get(key)
        if window is None or now_ms > window.reset_at:
            window = RateLimitWindow(count=1, reset_at=now_ms + window_ms)
            self._windows[key] = window
        else:
            window.count += 1
        return RateLimitWindow(count=window.count, reset_at=window.reset_at)

    async def reset(self, key: Optional[str] = None) -> None:
        if key is not None:
            self._windows.pop(key, None)
        else:
            self._windows.clear()


class RedisRateLimiterStore:
    """Window map shared through Redis.

    The first ``INCR`` of a window creates the key and arms ``PEXPIRE``;
    Redis deletes the key when the window elapses, which starts a new one.
    """

    def __init__(self, redis_client, prefix: str = "convai:ratelimit:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def hit(self, key: str, now_ms: float, window_ms: int) -> RateLimitWindow:
        redis_key = self._key(key)
        count = int(await self._redis.incr(redis_key))
        if count == 1:
            await self._redis.pexpire(redis_key, window_ms)
            return RateLimitWindow(count=count, reset_at=now_ms + window_ms)

        ttl_ms = await self._redis.pttl(redis_key)
        if ttl_ms is None or int(ttl_ms) < 0:
            # Key lost its expiry (e.g. crash between INCR and PEXPIRE).
            await self._redis.pexpire(redis_key, window_ms)
            ttl_ms = window_ms
        return RateLimitWindow(count=count, reset_at=now_ms + int(ttl_ms))

    async def reset(self, key: Optional[str] = None) -> None:
        if key is not None:
            await self._redis.delete(self._key(key))
            return
        async for redis_key in self._redis.scan_iter(match=f"{self._prefix}*"):
            await self._redis.delete(redis_key)


def _now_ms() -> float:
    return time.time() * 1000.0


class FixedWindowRateLimiter:
    """Fixed-window limiter guarding signed URL issuance.

    Usage::

        limiter = get_rate_limiter()
        result = await limiter.check(client_ip)
        if result.exceeded:
            ...  # 429 with result.reset_at
    """

    def __init__(
        self,
        store: Optional[RateLimiterStore] = None,
        *,
        window_ms: int = DEFAULT_WINDOW_MS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self.store: RateLimiterStore = store or InMemoryRateLimiterStore()
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._clock = clock

    def now_ms(self) -> float:
        return self._clock()

    async def check(self, key: str, now_ms: Optional[float] = None) -> RateLimitResult:
        """Record one request for ``key`` and report whether the window is exceeded."""
        now = self._clock() if now_ms is None else now_ms
        window = await self.store.hit(key, now, self.window_ms)
        exceeded = window.count > self.max_requests
        if exceeded:
            logger.warning(
                "Rate limit exceeded: key=%s count=%s limit=%s",
                key,
                window.count,
                self.max_requests,
            )
        return RateLimitResult(
            exceeded=exceeded,
            reset_at=window.reset_at,
            count=window.count,
            limit=self.max_requests,
        )

    async def reset(self, key: Optional[str] = None) -> None:
        """Reset window(s) -- mainly useful for testing."""
        await self.store.reset(key)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_instance: Optional[FixedWindowRateLimiter] = None


def _build_store() -> RateLimiterStore:
    settings = get_settings()
    if settings.RATE_LIMIT_STORAGE.lower() == "redis":
        import redis.asyncio as redis_asyncio

        logger.info("Rate limiter using Redis store")
        return RedisRateLimiterStore(redis_asyncio.from_url(settings.REDIS_URL))
    return InMemoryRateLimiterStore()


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Return the module-level singleton rate limiter."""
    global _instance
    if _instance is None:
        settings = get_settings()
        _instance = FixedWindowRateLimiter(
            _build_store(),
            window_ms=settings.SIGNED_URL_RATE_LIMIT_WINDOW_MS,
            max_requests=settings.SIGNED_URL_RATE_LIMIT_MAX_REQUESTS,
        )
    return _instance


def reset_rate_limiter() -> None:
    """Destroy the singleton (useful for tests)."""
    global _instance
    _instance = None
