"""In-memory TTL cache used for token metadata and metadata documents."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    written_at: float


class TimedCache(Generic[K, V]):
    """Key/value store where every entry expires ``ttl`` seconds after it was written.

    Expired entries are treated as absent and evicted on read. ``set`` always
    replaces the whole value; there is no partial update. When ``maxsize`` is
    given the oldest write is dropped first once the cache grows past it.
    """

    def __init__(
        self,
        ttl: float,
        *,
        maxsize: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if maxsize is not None and maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.ttl = float(ttl)
        self.maxsize = maxsize
        self._clock = clock
        self._data: "OrderedDict[K, CacheEntry[V]]" = OrderedDict()
        self._lock = threading.RLock()

    # internal helpers -----------------------------------------------------
    def _valid(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.written_at < self.ttl

    def _evict(self) -> None:
        if self.maxsize is None:
            return
        while len(self._data) > self.maxsize:
            self._data.popitem(last=False)

    # basic API ------------------------------------------------------------
    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if not self._valid(entry, self._clock()):
                del self._data[key]
                return None
            return entry.value

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._data.pop(key, None)
            self._data[key] = CacheEntry(value=value, written_at=self._clock())
            self._evict()

    def pop(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._data.pop(key, None)
        return entry.value if entry is not None else None

    def remaining_ttl(self, key: K) -> float:
        """Seconds until ``key`` expires, ``0.0`` when absent or expired."""

        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return 0.0
            return max(0.0, self.ttl - (self._clock() - entry.written_at))

    def purge(self) -> int:
        """Drop every expired entry and return how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._data.items() if not self._valid(entry, now)]
            for key in expired:
                del self._data[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"size": len(self._data), "ttl": self.ttl, "maxsize": self.maxsize}

    def __contains__(self, key: K) -> bool:  # pragma: no cover - trivial
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


__all__ = ["CacheEntry", "TimedCache"]
