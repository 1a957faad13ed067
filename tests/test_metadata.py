import asyncio

from hot_tokens.cache import TimedCache
from hot_tokens.metadata import (
    MetadataJsonResolver,
    MetadataResolver,
    TokenDisplayMetadata,
    fallback_image_url,
    ipfs_to_http,
    parse_metadata_document,
    placeholder_metadata,
)

MINT = "So11111111111111111111111111111111111111112"


def _meta(symbol: str = "HOT") -> TokenDisplayMetadata:
    return TokenDisplayMetadata(name=f"{symbol} Token", symbol=symbol, image_url="https://img/x.png")


class _Source:
    def __init__(self, name, results=None, *, delay=0.0, error=None):
        self.name = name
        self.results = list(results or [])
        self.delay = delay
        self.error = error
        self.calls = []

    async def __call__(self, key):
        self.calls.append(key)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0) if len(self.results) > 1 else self.results[0]
        return None


class _FakeHttp:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.requests = []

    async def get_json(self, url, *, params=None, headers=None, timeout=None):
        self.requests.append((url, dict(headers or {})))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.payload


def test_concurrent_resolutions_trigger_one_fetch():
    async def run() -> None:
        source = _Source("slow", [_meta()], delay=0.01)
        resolver = MetadataResolver([source])

        results = await asyncio.gather(*(resolver.resolve(MINT) for _ in range(20)))

        assert all(result == _meta() for result in results)
        assert len(source.calls) == 1
        assert await resolver.resolve(MINT) == _meta()
        assert len(source.calls) == 1
        assert resolver.stats()["size"] == 1
        assert resolver.stats()["pending"] == 0

    asyncio.run(run())


def test_strategies_tried_in_priority_order():
    async def run() -> None:
        failing = _Source("extension", error=RuntimeError("rpc down"))
        empty = _Source("empty", [TokenDisplayMetadata(name="", symbol="  ", image_url="")])
        good = _Source("das", [_meta("DAS")])
        never = _Source("never", [_meta("NOPE")])
        resolver = MetadataResolver([failing, empty, good, never])

        assert (await resolver.resolve(MINT)).symbol == "DAS"
        assert failing.calls == [MINT]
        assert empty.calls == [MINT]
        assert good.calls == [MINT]
        assert never.calls == []

    asyncio.run(run())


def test_slow_strategy_times_out_and_falls_through():
    async def run() -> None:
        slow = _Source("slow", [_meta("SLOW")], delay=1.0)
        fast = _Source("fast", [_meta("FAST")])
        resolver = MetadataResolver([slow, fast], timeout=0.05)
        assert (await resolver.resolve(MINT)).symbol == "FAST"

    asyncio.run(run())


def test_empty_results_are_not_cached():
    async def run() -> None:
        source = _Source("flaky", [None, _meta()])
        resolver = MetadataResolver([source])

        assert await resolver.resolve(MINT) is None
        assert resolver.stats()["size"] == 0
        assert await resolver.resolve(MINT) == _meta()
        assert len(source.calls) == 2

    asyncio.run(run())


def test_cached_value_expires_after_ttl(clock):
    async def run() -> None:
        source = _Source("s", [_meta()])
        resolver = MetadataResolver([source], cache=TimedCache(300.0, clock=clock))
        await resolver.resolve(MINT)
        clock.advance(299)
        await resolver.resolve(MINT)
        assert len(source.calls) == 1
        clock.advance(1)
        await resolver.resolve(MINT)
        assert len(source.calls) == 2

    asyncio.run(run())


def test_resolve_many_dedupes_and_bounds_batches(addresses):
    async def run() -> None:
        in_flight = 0
        peak = 0

        async def source(key):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            if key == addresses[1]:
                return None
            return TokenDisplayMetadata(name=key[:4], symbol=key[:3], image_url="")

        resolver = MetadataResolver([source], batch_size=3)
        keys = addresses[:8] + addresses[:2] + [""]
        resolved = await resolver.resolve_many(keys)

        assert peak <= 3
        assert set(resolved) == set(addresses[:8]) - {addresses[1]}
        assert resolved[addresses[0]].symbol == addresses[0][:3]

    asyncio.run(run())


def test_clear_drops_cache():
    async def run() -> None:
        source = _Source("s", [_meta()])
        resolver = MetadataResolver([source])
        await resolver.resolve(MINT)
        resolver.clear()
        await resolver.resolve(MINT)
        assert len(source.calls) == 2

    asyncio.run(run())


def test_ipfs_uris_rewritten_to_gateway():
    gateway = "https://gw.example.com/"
    assert ipfs_to_http("ipfs://bafyabc", gateway) == "https://gw.example.com/ipfs/bafyabc"
    assert ipfs_to_http("ipfs://ipfs/bafyabc", gateway) == "https://gw.example.com/ipfs/bafyabc"
    assert ipfs_to_http("/ipfs/bafyabc?x=1", gateway) == "https://gw.example.com/ipfs/bafyabc"
    assert ipfs_to_http("https://arweave.net/abc", gateway) == "https://arweave.net/abc"
    assert ipfs_to_http("", gateway) == ""


def test_fallback_image_is_deterministic_per_symbol():
    first = fallback_image_url("AB")
    assert first == fallback_image_url("AB")
    assert first.startswith("data:image/svg+xml,")
    assert "hsl(12.5%2C70%25%2C50%25)" in first
    assert "%3EAB%3C/text" in first
    assert fallback_image_url("ZZ") != first


def test_placeholder_metadata_uses_mint_prefix():
    meta = placeholder_metadata(MINT)
    assert meta.symbol == "SO111111"
    assert meta.name == "Token SO111111"
    assert meta.image_url == fallback_image_url("SO111111")
    assert meta.to_dict() == {"name": meta.name, "symbol": meta.symbol, "imageUrl": meta.image_url}


def test_metadata_document_reads_image_from_files():
    doc = parse_metadata_document(
        {"properties": {"files": [{"uri": "ipfs://bafyimg", "type": "image/png"}]}, "description": " hi "},
        "https://ipfs.io",
    )
    assert doc.image_url == "https://ipfs.io/ipfs/bafyimg"
    assert doc.description == "hi"
    assert parse_metadata_document(["not", "a", "mapping"]) is None


def test_document_resolver_sends_gateway_token_and_caches():
    async def run() -> None:
        http = _FakeHttp({"image": "ipfs://bafyimg", "description": "A token"})
        resolver = MetadataJsonResolver(http, gateway="https://gw.example.com", gateway_token="secret")

        first, second = await asyncio.gather(
            resolver.resolve("ipfs://bafymeta"), resolver.resolve("ipfs://bafymeta")
        )

        assert first == second
        assert first.image_url == "https://gw.example.com/ipfs/bafyimg"
        assert http.requests == [
            ("https://gw.example.com/ipfs/bafymeta", {"X-Pinata-Gateway-Token": "secret"})
        ]
        await resolver.resolve("https://arweave.net/meta.json")
        assert http.requests[-1] == ("https://arweave.net/meta.json", {})

    asyncio.run(run())


def test_document_fetch_failure_returns_none_and_is_retried():
    async def run() -> None:
        http = _FakeHttp(error=RuntimeError("gateway timeout"))
        resolver = MetadataJsonResolver(http)
        assert await resolver.resolve("ipfs://bafymeta") is None
        http.error = None
        http.payload = {"image": "https://cdn/img.png"}
        doc = await resolver.resolve("ipfs://bafymeta")
        assert doc.image_url == "https://cdn/img.png"
        assert len(http.requests) == 2

    asyncio.run(run())
