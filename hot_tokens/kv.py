"""Atomic window counters backing the request rate limiter."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import redis.asyncio as aioredis

log = logging.getLogger(__name__)


class CounterStore(Protocol):
    """Minimal async counter operations the rate limiter relies on."""

    async def incr_window(self, key: str, window_ms: int) -> tuple[int, int]:
        """Increment ``key`` and return ``(count, ttl_ms)``.

        The first increment of a window sets the key to expire after
        ``window_ms``; increment and expiry happen as one atomic step.
        """
        ...

    async def delete(self, key: str) -> None:
        ...


@dataclass
class _Counter:
    count: int
    expires_at: float


class InMemoryCounterStore(CounterStore):
    """Process-local counter store for tests and single-instance runs."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, _Counter] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def incr_window(self, key: str, window_ms: int) -> tuple[int, int]:
        async with self._lock:
            now = self._clock()
            counter = self._data.get(key)
            if counter is None or counter.expires_at <= now:
                counter = _Counter(count=0, expires_at=now + window_ms / 1000.0)
                self._data[key] = counter
            counter.count += 1
            ttl_ms = max(0, int(round((counter.expires_at - now) * 1000.0)))
            return counter.count, ttl_ms

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)


# INCR + PEXPIRE on first hit + PTTL, evaluated atomically by Redis. A key
# found without an expiry is re-armed with the window length.
_INCR_WINDOW_LUA = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisCounterStore(CounterStore):
    """Counter store shared across instances through Redis."""

    def __init__(self, client: Any) -> None:
        self._client = client
        self._script = client.register_script(_INCR_WINDOW_LUA)

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 1.0) -> "RedisCounterStore":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        log.info("Rate limit counters backed by Redis at %s", url.split("@")[-1])
        return cls(client)

    async def incr_window(self, key: str, window_ms: int) -> tuple[int, int]:
        count, ttl_ms = await self._script(keys=[key], args=[int(window_ms)])
        return int(count), int(ttl_ms)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["CounterStore", "InMemoryCounterStore", "RedisCounterStore"]
