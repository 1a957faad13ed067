"""Single-flight bookkeeping for concurrent upstream requests."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class PendingRequestCoalescer(Generic[K, T]):
    """Track at most one in-flight future per key.

    ``register`` starts a request for ``key`` only when none is pending;
    every caller that looks the key up before it settles receives the same
    future. The request removes its own entry when it finishes, successfully
    or not, so the next lookup starts a fresh request. Results are never
    retained.
    """

    def __init__(self) -> None:
        self._pending: Dict[K, "asyncio.Future[T]"] = {}

    def get(self, key: K) -> Optional["asyncio.Future[T]"]:
        future = self._pending.get(key)
        if future is not None and future.done():
            del self._pending[key]
            return None
        return future

    def register(self, key: K, request: Awaitable[T]) -> "asyncio.Future[T]":
        """Start ``request`` for ``key`` unless one is already pending.

        When ``key`` is pending the existing future is returned and
        ``request`` is closed without running.
        """

        existing = self.get(key)
        if existing is not None:
            if asyncio.iscoroutine(request):
                request.close()
            return existing
        future = asyncio.ensure_future(self._settle(key, request))
        self._pending[key] = future
        return future

    async def _settle(self, key: K, request: Awaitable[T]) -> T:
        try:
            return await request
        finally:
            # A newer registration for the same key must survive.
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    async def run(self, key: K, factory: Callable[[], Awaitable[T]]) -> T:
        """Await the pending request for ``key``, starting one via ``factory`` if needed.

        Waiters are shielded so that cancelling one caller does not cancel the
        shared request for everyone else.
        """

        future = self.get(key)
        if future is None:
            future = self.register(key, factory())
        return await asyncio.shield(future)

    def clear(self) -> None:
        """Forget every pending entry; in-flight futures still complete for their waiters."""

        self._pending.clear()

    def keys(self) -> list[Any]:
        return list(self._pending.keys())

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._pending)


__all__ = ["PendingRequestCoalescer"]
