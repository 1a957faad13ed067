"""Token display metadata resolution with caching and request coalescing."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
)
from urllib.parse import quote

from .cache import TimedCache
from .coalescer import PendingRequestCoalescer
from .http import HttpClient
from .utils import gather_in_batches, short_key, unique

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

DEFAULT_IPFS_GATEWAY = "https://ipfs.io"


@dataclass(slots=True, frozen=True)
class TokenDisplayMetadata:
    name: str
    symbol: str
    image_url: str
    description: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.symbol.strip()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "symbol": self.symbol,
            "imageUrl": self.image_url,
        }
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(slots=True, frozen=True)
class MetadataDocument:
    """Fields read from an off-chain metadata JSON document."""

    image_url: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.image_url or self.description)


MetadataStrategy = Callable[[str], Awaitable[Optional[TokenDisplayMetadata]]]


def ipfs_to_http(uri: str, gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    """Rewrite ``ipfs://`` URIs and ``/ipfs/`` paths onto ``gateway``.

    Plain HTTP(S) URLs that are not IPFS paths are returned untouched.
    """

    uri = (uri or "").strip()
    if not uri:
        return ""
    if uri.startswith("ipfs://"):
        cid = uri[len("ipfs://") :]
        if cid.startswith("ipfs/"):
            cid = cid[len("ipfs/") :]
    elif "/ipfs/" in uri and not uri.startswith(("http://", "https://")):
        cid = uri.split("/ipfs/", 1)[1]
    else:
        return uri
    cid = cid.split("?", 1)[0]
    if not cid:
        return uri
    return f"{gateway.rstrip('/')}/ipfs/{cid}"


def fallback_image_url(symbol: str) -> str:
    """Deterministic SVG badge coloured by a hue derived from ``symbol``."""

    hue = (sum(ord(ch) for ch in symbol) * 137.5) % 360
    label = quote(symbol[:2].upper())
    return (
        "data:image/svg+xml,%3Csvg xmlns=%22http://www.w3.org/2000/svg%22 viewBox=%220 0 100 100%22%3E"
        f"%3Crect fill=%22hsl({hue:g}%2C70%25%2C50%25)%22 width=%22100%22 height=%22100%22/%3E"
        "%3Ctext x=%2250%22 y=%2250%22 font-size=%2224%22 fill=%22white%22 text-anchor=%22middle%22 "
        f"dominant-baseline=%22central%22 font-weight=%22bold%22%3E{label}%3C/text%3E%3C/svg%3E"
    )


def placeholder_metadata(mint: str) -> TokenDisplayMetadata:
    """Display metadata for a token whose metadata could not be resolved."""

    short = mint[:8].upper()
    return TokenDisplayMetadata(
        name=f"Token {short}",
        symbol=short,
        image_url=fallback_image_url(short),
    )


def _strategy_name(strategy: Any) -> str:
    return str(
        getattr(strategy, "name", None)
        or getattr(strategy, "__name__", None)
        or type(strategy).__name__
    )


class CachedLoader(Generic[K, T]):
    """Cache hit, else join the pending load, else start one.

    Loaded values are cached only when ``is_usable`` accepts them, so empty
    results are retried on the next lookup.
    """

    def __init__(
        self,
        load: Callable[[K], Awaitable[Optional[T]]],
        *,
        cache: TimedCache[K, T],
        coalescer: PendingRequestCoalescer[K, Optional[T]] | None = None,
        is_usable: Callable[[T], bool] = bool,
    ) -> None:
        self._load = load
        self._cache = cache
        self._coalescer: PendingRequestCoalescer[K, Optional[T]] = (
            coalescer if coalescer is not None else PendingRequestCoalescer()
        )
        self._is_usable = is_usable

    @property
    def cache(self) -> TimedCache[K, T]:
        return self._cache

    @property
    def coalescer(self) -> PendingRequestCoalescer[K, Optional[T]]:
        return self._coalescer

    async def get(self, key: K) -> Optional[T]:
        cached = self._cache.get(key)
        if cached is not None:
            log.debug("Cache hit for %s", key)
            return cached
        return await self._coalescer.run(key, lambda: self._load_and_store(key))

    async def _load_and_store(self, key: K) -> Optional[T]:
        value = await self._load(key)
        if value is None or not self._is_usable(value):
            return None
        self._cache.set(key, value)
        return value

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> Dict[str, Any]:
        stats = dict(self._cache.stats())
        stats["pending"] = len(self._coalescer)
        return stats


class MetadataJsonResolver:
    """Fetch ``image``/``description`` from metadata JSON documents, keyed by URI."""

    def __init__(
        self,
        http: HttpClient,
        *,
        gateway: str = DEFAULT_IPFS_GATEWAY,
        gateway_token: str | None = None,
        ttl: float = 300.0,
        maxsize: int | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._http = http
        self._gateway = gateway
        self._gateway_token = gateway_token
        self._timeout = timeout
        self._loader: CachedLoader[str, MetadataDocument] = CachedLoader(
            self._fetch,
            cache=TimedCache(ttl, maxsize=maxsize),
            is_usable=lambda doc: not doc.is_empty,
        )

    @property
    def gateway(self) -> str:
        return self._gateway

    async def resolve(self, uri: str) -> Optional[MetadataDocument]:
        if not uri:
            return None
        return await self._loader.get(uri)

    async def _fetch(self, uri: str) -> Optional[MetadataDocument]:
        url = ipfs_to_http(uri, self._gateway)
        headers = {}
        if self._gateway_token and url.startswith(self._gateway.rstrip("/")):
            headers["X-Pinata-Gateway-Token"] = self._gateway_token
        try:
            payload = await self._http.get_json(url, headers=headers, timeout=self._timeout)
        except Exception as exc:
            log.warning("Metadata document fetch failed for %s: %s", url, exc)
            return None
        return parse_metadata_document(payload, self._gateway)

    def clear(self) -> None:
        self._loader.clear()

    def stats(self) -> Dict[str, Any]:
        return self._loader.stats()


def parse_metadata_document(payload: Any, gateway: str = DEFAULT_IPFS_GATEWAY) -> Optional[MetadataDocument]:
    if not isinstance(payload, Mapping):
        return None
    image = payload.get("image")
    if not isinstance(image, str) or not image.strip():
        properties = payload.get("properties")
        files = properties.get("files") if isinstance(properties, Mapping) else None
        image = None
        if isinstance(files, list):
            for item in files:
                if isinstance(item, Mapping) and isinstance(item.get("uri"), str):
                    image = item["uri"]
                    break
    description = payload.get("description")
    return MetadataDocument(
        image_url=ipfs_to_http(image, gateway) if image else None,
        description=description.strip() if isinstance(description, str) and description.strip() else None,
    )


class MetadataResolver:
    """Resolve token display metadata through an ordered list of sources.

    Sources are tried in priority order until one returns a non-empty symbol.
    A failing or timed-out source counts as "no result". Successful results
    are cached for ``ttl`` seconds; concurrent lookups for one key share a
    single upstream fetch.
    """

    def __init__(
        self,
        strategies: Sequence[MetadataStrategy],
        *,
        ttl: float = 300.0,
        maxsize: int | None = None,
        batch_size: int = 15,
        timeout: float = 3.0,
        cache: TimedCache[str, TokenDisplayMetadata] | None = None,
        coalescer: PendingRequestCoalescer[str, Optional[TokenDisplayMetadata]] | None = None,
    ) -> None:
        self._strategies = tuple(strategies)
        self._batch_size = max(1, int(batch_size))
        self._timeout = timeout
        self._loader: CachedLoader[str, TokenDisplayMetadata] = CachedLoader(
            self._fetch,
            cache=cache if cache is not None else TimedCache(ttl, maxsize=maxsize),
            coalescer=coalescer,
            is_usable=lambda meta: not meta.is_empty,
        )

    @property
    def strategies(self) -> tuple[MetadataStrategy, ...]:
        return self._strategies

    async def resolve(self, key: str) -> Optional[TokenDisplayMetadata]:
        if not key:
            return None
        return await self._loader.get(key)

    async def _fetch(self, key: str) -> Optional[TokenDisplayMetadata]:
        for strategy in self._strategies:
            name = _strategy_name(strategy)
            try:
                result = await asyncio.wait_for(strategy(key), self._timeout)
            except Exception as exc:
                log.debug("Metadata source %s failed for %s: %r", name, short_key(key), exc)
                continue
            if result is not None and not result.is_empty:
                log.debug("Metadata for %s resolved by %s", short_key(key), name)
                return result
        log.debug("No metadata source resolved %s", short_key(key))
        return None

    async def resolve_many(self, keys: Iterable[str]) -> Dict[str, TokenDisplayMetadata]:
        """Resolve ``keys`` in batches, returning only keys that resolved."""

        ordered = [key for key in unique(keys) if key]
        results = await gather_in_batches(
            ordered,
            batch_size=self._batch_size,
            worker=self.resolve,
        )
        resolved: Dict[str, TokenDisplayMetadata] = {}
        for key, result in zip(ordered, results):
            if isinstance(result, BaseException):
                log.warning("Metadata lookup for %s raised: %r", short_key(key), result)
                continue
            if result is not None:
                resolved[key] = result
        log.info("Resolved metadata for %d/%d tokens", len(resolved), len(ordered))
        return resolved

    def clear(self) -> None:
        self._loader.clear()

    def stats(self) -> Dict[str, Any]:
        return self._loader.stats()


__all__ = [
    "CachedLoader",
    "MetadataDocument",
    "MetadataJsonResolver",
    "MetadataResolver",
    "MetadataStrategy",
    "TokenDisplayMetadata",
    "fallback_image_url",
    "ipfs_to_http",
    "parse_metadata_document",
    "placeholder_metadata",
]
