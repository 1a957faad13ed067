"""Pool listing, per-pool metric collection and record normalization."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from solders.pubkey import Pubkey

from .errors import InvalidPoolRecord, SourceUnavailable
from .utils import clamp, short_key

log = logging.getLogger(__name__)

U64_MAX = (1 << 64) - 1
U128_MAX = (1 << 128) - 1


@dataclass(slots=True, frozen=True)
class PoolSnapshot:
    """Point-in-time view of one bonding-curve pool."""

    pool_address: str
    base_mint: str
    creator: str
    quote_reserve: int
    base_reserve: int
    sqrt_price: int
    volatility_accumulator: int = 0
    total_trading_base_fee: int = 0
    total_trading_quote_fee: int = 0
    progress: float = 0.0


class PoolReader(Protocol):
    async def list_pools(self) -> Sequence[Mapping[str, Any]]:
        ...

    async def get_fee_metrics(self, pool: PoolSnapshot) -> Mapping[str, Any]:
        ...

    async def get_curve_progress(self, pool: PoolSnapshot) -> float:
        ...


def _coerce_int(value: Any, *, field: str, upper: int = U64_MAX, default: Optional[int] = None) -> int:
    if value is None or value == "":
        if default is not None:
            return default
        raise InvalidPoolRecord(f"{field} is missing")
    if isinstance(value, bool):
        raise InvalidPoolRecord(f"{field} must be an integer, got bool")
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidPoolRecord(f"{field} must be integral, got {value!r}")
        number = int(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError:
            raise InvalidPoolRecord(f"{field} is not an integer: {value!r}") from None
    else:
        raise InvalidPoolRecord(f"{field} has unsupported type {type(value).__name__}")
    if number < 0 or number > upper:
        raise InvalidPoolRecord(f"{field} out of range: {number}")
    return number


def _coerce_address(value: Any, *, field: str) -> str:
    if isinstance(value, Mapping):
        value = value.get("address") or value.get("publicKey")
    if not isinstance(value, str) or not value.strip():
        raise InvalidPoolRecord(f"{field} is missing")
    text = value.strip()
    try:
        Pubkey.from_string(text)
    except Exception:
        raise InvalidPoolRecord(f"{field} is not a valid public key: {text!r}") from None
    return text


def _pick(record: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in record and record[name] is not None:
            return record[name]
    return None


def parse_pool_record(record: Mapping[str, Any]) -> PoolSnapshot:
    """Normalize one listing entry into a :class:`PoolSnapshot`.

    Accepts ``{"publicKey" | "pubkey" | "address": ..., "account": {...}}``
    wrappers as well as flat records, camelCase or snake_case keys, and
    integers given as ints, decimal strings or ``0x`` hex strings. Fee totals
    and progress are filled in later by the aggregator.
    """

    if not isinstance(record, Mapping):
        raise InvalidPoolRecord(f"pool record must be a mapping, got {type(record).__name__}")
    account = record.get("account")
    if not isinstance(account, Mapping):
        account = record
    address = _pick(record, "publicKey", "pubkey", "address", "pool_address", "poolAddress")
    tracker = _pick(account, "volatilityTracker", "volatility_tracker")
    if isinstance(tracker, Mapping):
        volatility = _pick(tracker, "volatilityAccumulator", "volatility_accumulator")
    else:
        volatility = _pick(account, "volatilityAccumulator", "volatility_accumulator")
    return PoolSnapshot(
        pool_address=_coerce_address(address, field="pool_address"),
        base_mint=_coerce_address(_pick(account, "baseMint", "base_mint"), field="base_mint"),
        creator=_coerce_address(_pick(account, "creator"), field="creator"),
        quote_reserve=_coerce_int(_pick(account, "quoteReserve", "quote_reserve"), field="quote_reserve"),
        base_reserve=_coerce_int(_pick(account, "baseReserve", "base_reserve"), field="base_reserve"),
        sqrt_price=_coerce_int(
            _pick(account, "sqrtPrice", "sqrt_price"), field="sqrt_price", upper=U128_MAX
        ),
        volatility_accumulator=_coerce_int(volatility, field="volatility_accumulator", default=0),
    )


def parse_fee_metrics(payload: Mapping[str, Any]) -> tuple[int, int]:
    """Return ``(total_trading_base_fee, total_trading_quote_fee)``."""

    if not isinstance(payload, Mapping):
        raise InvalidPoolRecord("fee metrics must be a mapping")
    total = payload.get("total")
    if isinstance(total, Mapping):
        base = _pick(total, "totalTradingBaseFee", "total_trading_base_fee", "baseFee", "base_fee")
        quote = _pick(total, "totalTradingQuoteFee", "total_trading_quote_fee", "quoteFee", "quote_fee")
    else:
        base = _pick(payload, "baseFee", "base_fee", "totalTradingBaseFee", "total_trading_base_fee")
        quote = _pick(payload, "quoteFee", "quote_fee", "totalTradingQuoteFee", "total_trading_quote_fee")
    return (
        _coerce_int(base, field="total_trading_base_fee"),
        _coerce_int(quote, field="total_trading_quote_fee"),
    )


class PoolMetricsAggregator:
    """Collect a :class:`PoolSnapshot` for every pool the reader lists.

    The listing is the only fatal step. Each pool's fee metrics and curve
    progress are fetched concurrently (bounded by ``concurrency``) with a
    per-call timeout; a pool whose lookups fail is dropped from the pass.
    """

    def __init__(
        self,
        reader: PoolReader,
        *,
        concurrency: int = 8,
        call_timeout: float = 5.0,
        listing_timeout: float = 30.0,
    ) -> None:
        self._reader = reader
        self._concurrency = max(1, int(concurrency))
        self._call_timeout = call_timeout
        self._listing_timeout = listing_timeout

    async def _list(self) -> Sequence[Mapping[str, Any]]:
        try:
            records = await asyncio.wait_for(self._reader.list_pools(), self._listing_timeout)
        except Exception as exc:
            log.error("Pool listing failed", exc_info=True)
            raise SourceUnavailable(f"pool listing failed: {exc!r}") from exc
        if not isinstance(records, (list, tuple)):
            log.error("Pool listing returned %s instead of a list", type(records).__name__)
            raise SourceUnavailable(f"pool listing failed: got {type(records).__name__}, expected a list")
        return records

    async def _complete(self, pool: PoolSnapshot, sem: asyncio.Semaphore) -> Optional[PoolSnapshot]:
        async with sem:
            try:
                fees = await asyncio.wait_for(self._reader.get_fee_metrics(pool), self._call_timeout)
                progress = await asyncio.wait_for(
                    self._reader.get_curve_progress(pool), self._call_timeout
                )
                base_fee, quote_fee = parse_fee_metrics(fees)
                progress_value = float(progress)
            except Exception as exc:
                log.warning("Skipping pool %s: %r", short_key(pool.pool_address), exc)
                return None
        if progress_value != progress_value:
            progress_value = 0.0
        return replace(
            pool,
            total_trading_base_fee=base_fee,
            total_trading_quote_fee=quote_fee,
            progress=clamp(progress_value, 0.0, 1.0),
        )

    async def collect(self) -> List[PoolSnapshot]:
        started = time.perf_counter()
        records = await self._list()
        pools: List[PoolSnapshot] = []
        for record in records:
            try:
                pools.append(parse_pool_record(record))
            except InvalidPoolRecord as exc:
                log.warning("Ignoring malformed pool record: %s", exc)
        sem = asyncio.Semaphore(self._concurrency)
        results = await asyncio.gather(*(self._complete(pool, sem) for pool in pools))
        snapshots = [snap for snap in results if snap is not None]
        log.info(
            "Collected %d/%d pools (%d listed) in %.2fs",
            len(snapshots),
            len(pools),
            len(records),
            time.perf_counter() - started,
        )
        return snapshots


__all__ = [
    "PoolMetricsAggregator",
    "PoolReader",
    "PoolSnapshot",
    "parse_fee_metrics",
    "parse_pool_record",
]
