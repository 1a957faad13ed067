"""Fixed window request rate limiting for the public endpoints."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .kv import CounterStore
from .utils import now_ts, to_epoch_ms

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "resetTime": self.reset_time,
        }
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload


class RateLimiter:
    """Allow at most ``max_requests`` per identifier within each ``window_ms`` window.

    The counter lives in a shared :class:`CounterStore`. When the store cannot
    be reached the limiter fails open and allows the request.
    """

    def __init__(
        self,
        store: CounterStore,
        *,
        window_ms: int = 60_000,
        max_requests: int = 10,
        prefix: str = "rate-limit",
        timeout: float = 1.0,
        clock: Callable[[], float] = now_ts,
    ) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self._store = store
        self.window_ms = int(window_ms)
        self.max_requests = int(max_requests)
        self._prefix = prefix
        self._timeout = timeout
        self._clock = clock

    def _key(self, identifier: str) -> str:
        return f"{self._prefix}:{identifier}"

    async def is_allowed(self, identifier: str) -> RateLimitResult:
        now_ms = to_epoch_ms(self._clock())
        try:
            count, ttl_ms = await asyncio.wait_for(
                self._store.incr_window(self._key(identifier), self.window_ms),
                self._timeout,
            )
        except Exception:
            log.error("Rate limiter store unavailable; allowing request", exc_info=True)
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests,
                reset_time=now_ms + self.window_ms,
            )

        reset_time = now_ms + (ttl_ms if ttl_ms > 0 else self.window_ms)
        remaining = max(0, self.max_requests - count)
        if count <= self.max_requests:
            return RateLimitResult(allowed=True, remaining=remaining, reset_time=reset_time)

        retry_after = max(1, math.ceil((reset_time - now_ms) / 1000.0))
        log.debug("Rate limit exceeded for %s (count=%d)", identifier, count)
        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_time=reset_time,
            retry_after=retry_after,
        )

    async def reset(self, identifier: str) -> None:
        try:
            await asyncio.wait_for(self._store.delete(self._key(identifier)), self._timeout)
        except Exception:
            log.error("Failed to reset rate limit for %s", identifier, exc_info=True)


__all__ = ["RateLimitResult", "RateLimiter"]
