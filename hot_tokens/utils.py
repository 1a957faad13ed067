"""Utility helpers shared by the hot token pipeline."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable, Sequence


def now_ts() -> float:
    """Return the current wall-clock timestamp as a float."""

    return time.time()


def to_epoch_ms(ts: float) -> int:
    return int(round(ts * 1000.0))


def clamp(value: float, minimum: float, maximum: float) -> float:
    """Return ``value`` bounded by ``minimum`` and ``maximum``."""

    return max(minimum, min(maximum, value))


def unique(items: Iterable[Any]) -> list[Any]:
    """Return ``items`` without duplicates, preserving first-seen order."""

    seen: set[Any] = set()
    ordered: list[Any] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        ordered.append(item)
    return ordered


def short_key(value: str, length: int = 8) -> str:
    """Abbreviate an address for log lines."""

    if len(value) <= length:
        return value
    return f"{value[:length]}..."


async def gather_in_batches(
    items: Sequence[Any],
    *,
    batch_size: int,
    worker: Callable[[Any], Awaitable[Any]],
) -> list[Any]:
    """Run ``worker`` over ``items`` with at most ``batch_size`` in flight.

    Results are returned in input order. Exceptions raised by ``worker`` are
    returned in place of the result rather than propagated.
    """

    if batch_size <= 0:
        batch_size = len(items) or 1
    results: list[Any] = []
    for start in range(0, len(items), batch_size):
        batch = items[start : start + batch_size]
        results.extend(
            await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        )
    return results
