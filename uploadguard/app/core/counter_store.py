"""
Counter stores for request rate limiting.

A store keeps one fixed-window counter per key. ``hit`` is a single atomic
step: start a window if none is active, increment while below the limit, and
refuse without incrementing once the limit is reached. Two concurrent hits
can therefore never both take the last remaining slot.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CounterHit:
    """Outcome of one ``hit``: counter value after the hit and window end."""
    count: int
    reset_at: float
    accepted: bool


class CounterStore:
    """Interface for rate limit counter stores."""

    async def hit(self, key: str, limit: int, window_seconds: float) -> CounterHit:
        raise NotImplementedError

    async def reset(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """Release any connection held by the store."""


class MemoryCounterStore(CounterStore):
    """
    Process-local counter store.

    Windows are tracked per key as ``(count, reset_at)``; a lock makes the
    compare-and-increment atomic across threads and tasks. Every
    ``sweep_interval`` hits, counters whose window has ended are dropped so
    the map only holds identities seen in a live window.
    """

    def __init__(self, clock=time.time, sweep_interval: int = 1000):
        if sweep_interval < 1:
            raise ValueError("sweep_interval must be at least 1")
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self.sweep_interval = sweep_interval
        self._hits_since_sweep = 0

    @property
    def active_keys(self) -> int:
        """Number of counters currently held."""
        return len(self._counters)

    async def hit(self, key: str, limit: int, window_seconds: float) -> CounterHit:
        now = self._clock()
        with self._lock:
            self._hits_since_sweep += 1
            if self._hits_since_sweep >= self.sweep_interval:
                self._hits_since_sweep = 0
                self._purge_locked(now)

            count, reset_at = self._counters.get(key, (0, now))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds

            if count >= limit:
                self._counters[key] = (count, reset_at)
                return CounterHit(count=count, reset_at=reset_at, accepted=False)

            count += 1
            self._counters[key] = (count, reset_at)
            return CounterHit(count=count, reset_at=reset_at, accepted=True)

    async def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    def purge_expired(self) -> int:
        """Drop counters whose window has ended; returns how many were removed."""
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, (_, reset_at) in self._counters.items() if now >= reset_at]
        for key in expired:
            del self._counters[key]
        if expired:
            logger.debug("Purged expired rate limit counters", count=len(expired))
        return len(expired)


# GET/compare/INCR/PEXPIRE run as one server-side script, so the whole hit is
# atomic with respect to other clients of the same Redis.
_HIT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
if current >= limit then
    local ttl = redis.call('PTTL', KEYS[1])
    if ttl < 0 then ttl = window_ms end
    return {current, ttl, 0}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], window_ms)
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], window_ms)
    ttl = window_ms
end
return {current, ttl, 1}
"""


class RedisCounterStore(CounterStore):
    """Counter store shared across processes through Redis."""

    def __init__(self, client: Any = None, url: Optional[str] = None, clock=time.time):
        if client is None:
            from redis.asyncio import Redis

            client = Redis.from_url(url or "redis://localhost:6379/0")
        self._client = client
        self._clock = clock
        self._script = client.register_script(_HIT_SCRIPT)

    async def hit(self, key: str, limit: int, window_seconds: float) -> CounterHit:
        window_ms = max(int(window_seconds * 1000), 1)
        count, ttl_ms, accepted = await self._script(keys=[key], args=[limit, window_ms])
        return CounterHit(
            count=int(count),
            reset_at=self._clock() + int(ttl_ms) / 1000.0,
            accepted=bool(int(accepted)),
        )

    async def reset(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def create_counter_store(settings: Any) -> CounterStore:
    """Build the counter store configured in ``settings.rate_limit_store``."""
    store_settings = settings.rate_limit_store
    if store_settings.backend == "redis":
        logger.info("Using Redis rate limit store", url=store_settings.redis_url)
        return RedisCounterStore(url=store_settings.redis_url)
    return MemoryCounterStore()


__all__ = [
    "CounterHit",
    "CounterStore",
    "MemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
