"""Ranked hot token snapshot cache and the wiring that builds it."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cache import TimedCache
from .coalescer import PendingRequestCoalescer
from .config import HotTokensConfig
from .errors import RankingUnavailable, SourceUnavailable
from .http import HttpClient
from .kv import CounterStore, InMemoryCounterStore, RedisCounterStore
from .metadata import MetadataJsonResolver, MetadataResolver, placeholder_metadata
from .pools import PoolMetricsAggregator, PoolSnapshot
from .providers import HeliusAssetSource, PoolIndexerReader, Token2022MetadataSource, das_url_with_key
from .rate_limit import RateLimiter
from .scoring import DEFAULT_WEIGHTS, HotnessWeights, RankedToken, hotness_score, is_active, rank_tokens
from .utils import now_ts, to_epoch_ms, unique

log = logging.getLogger(__name__)

_REFRESH_KEY = "hot-tokens"


@dataclass(slots=True, frozen=True)
class _RankedSnapshot:
    tokens: Tuple[RankedToken, ...]
    fetched_at: float
    depth: int
    complete: bool

    def covers(self, limit: int) -> bool:
        return self.depth >= limit


@dataclass(slots=True)
class HotTokensResult:
    tokens: List[RankedToken]
    cached: bool
    fetched_at: float
    cache_expires_at: float
    cache_remaining_ms: int = field(default=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens": [token.to_dict() for token in self.tokens],
            "cached": self.cached,
            "fetchedAt": to_epoch_ms(self.fetched_at),
            "cacheExpiresAt": to_epoch_ms(self.cache_expires_at),
            "cacheRemainingMs": self.cache_remaining_ms,
        }


class HotTokensService:
    """Serve the hotness ranking from a short-lived snapshot.

    A snapshot is fresh for ``cache_ttl`` seconds after the pass that built
    it completed. When it is stale, or too shallow for the requested limit,
    exactly one refresh pass runs; concurrent callers wait for that pass and
    receive the same snapshot. A failed pass raises
    :class:`RankingUnavailable` to every waiter and leaves the previous
    snapshot as it was.
    """

    def __init__(
        self,
        aggregator: PoolMetricsAggregator,
        resolver: MetadataResolver,
        *,
        cache_ttl: float = 30.0,
        default_limit: int = 25,
        max_limit: int = 100,
        weights: HotnessWeights = DEFAULT_WEIGHTS,
        clock: Callable[[], float] = now_ts,
    ) -> None:
        if cache_ttl <= 0:
            raise ValueError("cache_ttl must be positive")
        self._aggregator = aggregator
        self._resolver = resolver
        self._cache_ttl = float(cache_ttl)
        self.default_limit = int(default_limit)
        self.max_limit = int(max_limit)
        self._weights = weights
        self._clock = clock
        self._snapshot: Optional[_RankedSnapshot] = None
        self._refreshes: PendingRequestCoalescer[str, _RankedSnapshot] = PendingRequestCoalescer()
        self._refresh_count = 0
        self._last_error: Optional[str] = None

    @property
    def cache_ttl(self) -> float:
        return self._cache_ttl

    def normalize_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.default_limit
        if limit <= 0:
            raise ValueError("limit must be a positive integer")
        return min(int(limit), self.max_limit)

    def _depth(self, limit: int) -> int:
        return max(limit, self.normalize_limit(None))

    def _is_fresh(self, snapshot: _RankedSnapshot, now: float) -> bool:
        return now - snapshot.fetched_at < self._cache_ttl

    def _result(self, snapshot: _RankedSnapshot, limit: int, *, cached: bool) -> HotTokensResult:
        now = self._clock()
        expires_at = snapshot.fetched_at + self._cache_ttl
        return HotTokensResult(
            tokens=list(snapshot.tokens[:limit]),
            cached=cached,
            fetched_at=snapshot.fetched_at,
            cache_expires_at=expires_at,
            cache_remaining_ms=max(0, int((expires_at - now) * 1000)),
        )

    async def get_hot_tokens_cached(self, limit: Optional[int] = None) -> HotTokensResult:
        limit = self.normalize_limit(limit)
        while True:
            snapshot = self._snapshot
            if snapshot is not None and self._is_fresh(snapshot, self._clock()) and snapshot.covers(limit):
                log.debug("Serving cached hot tokens (limit=%d)", limit)
                return self._result(snapshot, limit, cached=True)

            pending = self._refreshes.get(_REFRESH_KEY)
            if pending is None:
                future = self._refreshes.register(_REFRESH_KEY, self._refresh_pass(self._depth(limit)))
                snapshot = await asyncio.shield(future)
                return self._result(snapshot, limit, cached=False)

            snapshot = await asyncio.shield(pending)
            if snapshot.covers(limit):
                return self._result(snapshot, limit, cached=True)
            log.debug("In-flight refresh too shallow for limit=%d; refreshing again", limit)

    async def refresh(self, limit: Optional[int] = None) -> HotTokensResult:
        """Run a ranking pass now, joining one that is already in flight."""

        limit = self.normalize_limit(limit)
        depth = self._depth(limit)
        snapshot = await self._refreshes.run(_REFRESH_KEY, lambda: self._refresh_pass(depth))
        if not snapshot.covers(limit):
            snapshot = await self._refreshes.run(_REFRESH_KEY, lambda: self._refresh_pass(depth))
        return self._result(snapshot, limit, cached=False)

    async def _refresh_pass(self, depth: int) -> _RankedSnapshot:
        started = time.perf_counter()
        try:
            pools = await self._aggregator.collect()
        except SourceUnavailable as exc:
            self._last_error = str(exc)
            raise RankingUnavailable("Failed to fetch hot tokens") from exc

        scored: List[Tuple[PoolSnapshot, float]] = []
        for pool in pools:
            score = hotness_score(pool, self._weights)
            if is_active(pool, score):
                scored.append((pool, score))
        scored.sort(key=lambda item: item[1], reverse=True)
        selected = scored[:depth]

        metadata = await self._resolver.resolve_many(unique(pool.base_mint for pool, _ in selected))
        candidates = [
            RankedToken.from_snapshot(pool, metadata.get(pool.base_mint) or placeholder_metadata(pool.base_mint), score)
            for pool, score in selected
        ]
        snapshot = _RankedSnapshot(
            tokens=tuple(rank_tokens(candidates)),
            fetched_at=self._clock(),
            depth=depth,
            complete=len(scored) <= depth,
        )
        self._snapshot = snapshot
        self._refresh_count += 1
        self._last_error = None
        log.info(
            "Ranked %d active of %d pools in %.2fs",
            len(scored),
            len(pools),
            time.perf_counter() - started,
        )
        return snapshot

    def clear(self) -> None:
        self._snapshot = None
        self._resolver.clear()

    def stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        now = self._clock()
        ranked: Dict[str, Any] = {
            "ttl": self._cache_ttl,
            "refreshing": _REFRESH_KEY in self._refreshes,
            "refreshes": self._refresh_count,
            "lastError": self._last_error,
            "size": 0,
        }
        if snapshot is not None:
            expires_at = snapshot.fetched_at + self._cache_ttl
            ranked.update(
                {
                    "size": len(snapshot.tokens),
                    "depth": snapshot.depth,
                    "complete": snapshot.complete,
                    "fresh": self._is_fresh(snapshot, now),
                    "fetchedAt": to_epoch_ms(snapshot.fetched_at),
                    "cacheExpiresAt": to_epoch_ms(expires_at),
                    "cacheRemainingMs": max(0, int((expires_at - now) * 1000)),
                }
            )
        return {"ranked": ranked, "metadata": self._resolver.stats()}


def build_counter_store(config: HotTokensConfig) -> CounterStore:
    if config.redis_url:
        log.info("Using Redis counter store")
        return RedisCounterStore.from_url(config.redis_url)
    log.info("REDIS_URL not set; using in-process rate limit counters")
    return InMemoryCounterStore()


def build_rate_limiter(config: HotTokensConfig, store: CounterStore | None = None) -> RateLimiter:
    return RateLimiter(
        store if store is not None else build_counter_store(config),
        window_ms=config.rate_limit_window_ms,
        max_requests=config.rate_limit_max_requests,
    )


def build_service(config: HotTokensConfig, http: HttpClient) -> HotTokensService:
    """Wire readers, metadata sources and caches into a :class:`HotTokensService`."""

    documents = MetadataJsonResolver(
        http,
        gateway=config.ipfs_gateway,
        gateway_token=config.ipfs_gateway_token,
        ttl=config.metadata_ttl,
        maxsize=config.metadata_cache_size,
        timeout=config.metadata_timeout,
    )
    strategies = [
        Token2022MetadataSource(
            http,
            rpc_url=config.rpc_url,
            documents=documents,
            timeout=config.metadata_timeout,
        ),
    ]
    if config.helius_api_key:
        strategies.append(
            HeliusAssetSource(
                http,
                url=das_url_with_key(config.das_url, config.helius_api_key),
                gateway=config.ipfs_gateway,
                timeout=config.metadata_timeout,
            )
        )
    else:
        log.warning("HELIUS_API_KEY not set; DAS metadata lookups disabled")
    resolver = MetadataResolver(
        strategies,
        batch_size=config.metadata_batch_size,
        timeout=config.metadata_timeout * 2,
        cache=TimedCache(config.metadata_ttl, maxsize=config.metadata_cache_size),
    )
    reader = PoolIndexerReader(
        http,
        base_url=config.indexer_url,
        config_key=config.dbc_config_key,
        timeout=config.call_timeout,
        listing_timeout=config.listing_timeout,
    )
    aggregator = PoolMetricsAggregator(
        reader,
        concurrency=config.pool_concurrency,
        call_timeout=config.call_timeout,
        listing_timeout=config.listing_timeout,
    )
    return HotTokensService(
        aggregator,
        resolver,
        cache_ttl=config.cache_ttl,
        default_limit=config.default_limit,
        max_limit=config.max_limit,
    )


__all__ = [
    "HotTokensResult",
    "HotTokensService",
    "build_counter_store",
    "build_rate_limiter",
    "build_service",
]
