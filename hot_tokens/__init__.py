"""Hot token discovery, scoring and caching for a bonding-curve launchpad."""

from .cache import TimedCache
from .coalescer import PendingRequestCoalescer
from .config import HotTokensConfig, load_config
from .errors import HotTokensError, InvalidPoolRecord, RankingUnavailable, SourceUnavailable
from .metadata import MetadataResolver, TokenDisplayMetadata
from .pools import PoolMetricsAggregator, PoolSnapshot
from .rate_limit import RateLimiter, RateLimitResult
from .scoring import RankedToken, hotness_score, rank_tokens
from .service import HotTokensResult, HotTokensService, build_service

__version__ = "0.1.0"

__all__ = [
    "HotTokensConfig",
    "HotTokensError",
    "HotTokensResult",
    "HotTokensService",
    "InvalidPoolRecord",
    "MetadataResolver",
    "PendingRequestCoalescer",
    "PoolMetricsAggregator",
    "PoolSnapshot",
    "RankedToken",
    "RankingUnavailable",
    "RateLimitResult",
    "RateLimiter",
    "SourceUnavailable",
    "TimedCache",
    "TokenDisplayMetadata",
    "build_service",
    "hotness_score",
    "load_config",
    "rank_tokens",
]
