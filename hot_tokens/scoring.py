"""Hotness scoring and ranking of pool snapshots."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional

from .metadata import TokenDisplayMetadata
from .pools import PoolSnapshot
from .utils import clamp

LAMPORTS_PER_SOL = 1_000_000_000


@dataclass(slots=True, frozen=True)
class HotnessWeights:
    volume: float = 0.7
    volatility: float = 0.3
    volume_scale: float = 1e9
    volume_multiplier: float = 10.0
    volatility_scale: float = 1e6
    volatility_multiplier: float = 0.1


DEFAULT_WEIGHTS = HotnessWeights()


def volume_score(total_trading_quote_fee: int, weights: HotnessWeights = DEFAULT_WEIGHTS) -> float:
    raw = (total_trading_quote_fee / weights.volume_scale) * weights.volume_multiplier
    return clamp(raw, 0.0, 100.0)


def volatility_score(volatility_accumulator: int, weights: HotnessWeights = DEFAULT_WEIGHTS) -> float:
    raw = (volatility_accumulator / weights.volatility_scale) * weights.volatility_multiplier
    return clamp(raw, 0.0, 100.0)


def hotness_score(snapshot: PoolSnapshot, weights: HotnessWeights = DEFAULT_WEIGHTS) -> float:
    """Weighted blend of the volume and volatility sub-scores, in ``[0, 100]``."""

    score = (
        weights.volume * volume_score(snapshot.total_trading_quote_fee, weights)
        + weights.volatility * volatility_score(snapshot.volatility_accumulator, weights)
    )
    return clamp(score, 0.0, 100.0)


def is_active(snapshot: PoolSnapshot, score: float) -> bool:
    return score > 0 or snapshot.quote_reserve > 0


@dataclass(slots=True, frozen=True)
class RankedToken:
    pool_address: str
    base_mint: str
    creator: str
    metadata: TokenDisplayMetadata
    progress: float
    quote_reserve: int
    base_reserve: int
    sqrt_price: int
    volatility: int
    total_volume: int
    hotness_score: float
    rank: int = 0

    @classmethod
    def from_snapshot(
        cls,
        snapshot: PoolSnapshot,
        metadata: TokenDisplayMetadata,
        score: float,
    ) -> "RankedToken":
        return cls(
            pool_address=snapshot.pool_address,
            base_mint=snapshot.base_mint,
            creator=snapshot.creator,
            metadata=metadata,
            progress=snapshot.progress,
            quote_reserve=snapshot.quote_reserve,
            base_reserve=snapshot.base_reserve,
            sqrt_price=snapshot.sqrt_price,
            volatility=snapshot.volatility_accumulator,
            total_volume=snapshot.total_trading_quote_fee,
            hotness_score=score,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON view: SOL amounts as floats, big integers as strings, progress in percent."""

        payload: Dict[str, Any] = {
            "address": self.pool_address,
            "baseMint": self.base_mint,
            "creator": self.creator,
        }
        payload.update(self.metadata.to_dict())
        payload.update(
            {
                "progress": round(self.progress * 100),
                "quoteReserve": self.quote_reserve / LAMPORTS_PER_SOL,
                "baseReserve": str(self.base_reserve),
                "sqrtPrice": str(self.sqrt_price),
                "volatility": str(self.volatility),
                "totalVolume": self.total_volume / LAMPORTS_PER_SOL,
                "hotnessScore": self.hotness_score,
                "rank": self.rank,
            }
        )
        return payload


def rank_tokens(candidates: Iterable[RankedToken], limit: Optional[int] = None) -> List[RankedToken]:
    """Order by descending score, keeping input order on ties, and number from 1."""

    ordered = sorted(candidates, key=lambda token: token.hotness_score, reverse=True)
    if limit is not None:
        ordered = ordered[: max(0, limit)]
    return [replace(token, rank=index + 1) for index, token in enumerate(ordered)]


__all__ = [
    "DEFAULT_WEIGHTS",
    "HotnessWeights",
    "LAMPORTS_PER_SOL",
    "RankedToken",
    "hotness_score",
    "is_active",
    "rank_tokens",
    "volatility_score",
    "volume_score",
]
