"""HTTP reader for the launchpad pool indexer sidecar.

The sidecar wraps the bonding-curve SDK and exposes three read-only routes::

    GET {base}/pools?config=<config key>
    GET {base}/pools/<address>/fees
    GET {base}/pools/<address>/progress
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping
from urllib.parse import quote

from ..http import HttpClient
from ..pools import PoolSnapshot

log = logging.getLogger(__name__)


class PoolIndexerReader:
    def __init__(
        self,
        http: HttpClient,
        *,
        base_url: str,
        config_key: str | None = None,
        timeout: float = 5.0,
        listing_timeout: float | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._http = http
        self._base = base_url.rstrip("/")
        self._config_key = config_key
        self._timeout = timeout
        self._listing_timeout = listing_timeout if listing_timeout is not None else timeout

    def _pool_url(self, pool: PoolSnapshot, suffix: str) -> str:
        return f"{self._base}/pools/{quote(pool.pool_address, safe='')}/{suffix}"

    async def list_pools(self) -> List[Mapping[str, Any]]:
        params = {"config": self._config_key} if self._config_key else None
        payload = await self._http.get_json(f"{self._base}/pools", params=params, timeout=self._listing_timeout)
        if isinstance(payload, Mapping):
            payload = payload.get("pools", payload.get("data"))
        if not isinstance(payload, list):
            raise ValueError(f"pool listing returned {type(payload).__name__}, expected a list")
        log.debug("Pool indexer listed %d pools", len(payload))
        return payload

    async def get_fee_metrics(self, pool: PoolSnapshot) -> Mapping[str, Any]:
        payload = await self._http.get_json(self._pool_url(pool, "fees"), timeout=self._timeout)
        if not isinstance(payload, Mapping):
            raise ValueError(f"fee metrics for {pool.pool_address} are not an object")
        return payload

    async def get_curve_progress(self, pool: PoolSnapshot) -> float:
        payload = await self._http.get_json(self._pool_url(pool, "progress"), timeout=self._timeout)
        if isinstance(payload, Mapping):
            payload = payload.get("progress")
        if isinstance(payload, bool) or not isinstance(payload, (int, float, str)):
            raise ValueError(f"curve progress for {pool.pool_address} is missing")
        return float(payload)


__all__ = ["PoolIndexerReader"]
