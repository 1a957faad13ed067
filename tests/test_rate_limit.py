import asyncio

import pytest

from hot_tokens.kv import InMemoryCounterStore, RedisCounterStore
from hot_tokens.rate_limit import RateLimiter

NOW = 1_700_000_000.0
NOW_MS = 1_700_000_000_000


class _BrokenStore:
    async def incr_window(self, key, window_ms):
        raise ConnectionError("redis unreachable")

    async def delete(self, key):
        raise ConnectionError("redis unreachable")


class _HangingStore:
    async def incr_window(self, key, window_ms):
        await asyncio.sleep(10)

    async def delete(self, key):
        await asyncio.sleep(10)


class _FakeScript:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    async def __call__(self, keys, args):
        self.calls.append((keys, args))
        return self.reply


class _FakeRedis:
    def __init__(self, reply):
        self.script = _FakeScript(reply)
        self.source = None
        self.deleted = []
        self.closed = False

    def register_script(self, source):
        self.source = source
        return self.script

    async def delete(self, key):
        self.deleted.append(key)

    async def aclose(self):
        self.closed = True


def test_in_memory_store_restarts_count_after_window(clock):
    async def run() -> None:
        store = InMemoryCounterStore(clock=clock)
        assert await store.incr_window("ip", 60_000) == (1, 60_000)
        clock.advance(30)
        assert await store.incr_window("ip", 60_000) == (2, 30_000)
        clock.advance(30)
        assert await store.incr_window("ip", 60_000) == (1, 60_000)
        await store.delete("ip")
        assert await store.incr_window("ip", 60_000) == (1, 60_000)

    asyncio.run(run())


def test_requests_beyond_max_are_denied(clock):
    async def run() -> None:
        limiter = RateLimiter(
            InMemoryCounterStore(clock=clock),
            window_ms=60_000,
            max_requests=3,
            clock=lambda: NOW,
        )
        results = [await limiter.is_allowed("1.2.3.4") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[0].reset_time == NOW_MS + 60_000
        assert results[-1].retry_after == 60
        assert results[0].retry_after is None

        other = await limiter.is_allowed("5.6.7.8")
        assert other.allowed

    asyncio.run(run())


def test_retry_after_rounds_up_to_whole_seconds(clock):
    async def run() -> None:
        limiter = RateLimiter(
            InMemoryCounterStore(clock=clock), window_ms=1_500, max_requests=1, clock=lambda: NOW
        )
        await limiter.is_allowed("ip")
        clock.advance(1.4)
        denied = await limiter.is_allowed("ip")
        assert not denied.allowed
        assert denied.retry_after == 1
        assert denied.to_dict() == {
            "allowed": False,
            "remaining": 0,
            "resetTime": NOW_MS + 100,
            "retryAfter": 1,
        }

    asyncio.run(run())


def test_reset_clears_identifier(clock):
    async def run() -> None:
        limiter = RateLimiter(InMemoryCounterStore(clock=clock), max_requests=1, clock=lambda: NOW)
        await limiter.is_allowed("ip")
        assert not (await limiter.is_allowed("ip")).allowed
        await limiter.reset("ip")
        assert (await limiter.is_allowed("ip")).allowed

    asyncio.run(run())


@pytest.mark.parametrize("store", [_BrokenStore(), _HangingStore()])
def test_store_failure_fails_open(store):
    async def run() -> None:
        limiter = RateLimiter(store, max_requests=10, timeout=0.05, clock=lambda: NOW)
        result = await limiter.is_allowed("ip")
        assert result.allowed
        assert result.remaining == 10
        assert result.reset_time == NOW_MS + 60_000
        await limiter.reset("ip")

    asyncio.run(run())


def test_redis_store_uses_atomic_script():
    async def run() -> None:
        client = _FakeRedis(["2", "59000"])
        store = RedisCounterStore(client)
        assert await store.incr_window("rate-limit:ip", 60_000) == (2, 59_000)
        assert client.script.calls == [(["rate-limit:ip"], [60_000])]
        assert "INCR" in client.source and "PEXPIRE" in client.source
        await store.delete("rate-limit:ip")
        await store.close()
        assert client.deleted == ["rate-limit:ip"]
        assert client.closed

    asyncio.run(run())


def test_limiter_prefixes_keys():
    async def run() -> None:
        client = _FakeRedis([1, 60_000])
        limiter = RateLimiter(RedisCounterStore(client), clock=lambda: NOW)
        await limiter.is_allowed("10.0.0.1")
        assert client.script.calls[0][0] == ["rate-limit:10.0.0.1"]

    asyncio.run(run())


@pytest.mark.parametrize("kwargs", [{"window_ms": 0}, {"max_requests": 0}])
def test_invalid_limiter_configuration(kwargs):
    with pytest.raises(ValueError):
        RateLimiter(InMemoryCounterStore(), **kwargs)
