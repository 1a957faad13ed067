"""Shared aiohttp client used by every upstream integration."""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from typing import Any, Dict, Mapping, Optional

import aiohttp

log = logging.getLogger(__name__)


class HTTPError(Exception):
    """Raised when an upstream request returns a non-success status code."""

    def __init__(self, status: int, url: str, message: str = "") -> None:
        super().__init__(f"HTTP {status} from {url}{': ' + message if message else ''}")
        self.status = status
        self.url = url


class JsonRpcError(Exception):
    """Raised when a JSON-RPC endpoint answers with an ``error`` member."""


class HttpClient:
    """aiohttp session wrapper enforcing a timeout on every call.

    ``default_timeout`` applies when a call does not pass its own. Responses
    with status 429 or 5xx are retried once after a short jitter; anything
    else that is not 2xx raises :class:`HTTPError`.
    """

    def __init__(
        self,
        *,
        default_timeout: float = 5.0,
        connect_timeout: float = 1.5,
        user_agent: str = "hot-tokens/1.0",
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._default_timeout = default_timeout
        self._connect_timeout = connect_timeout
        self._user_agent = user_agent
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()
        self._ids = itertools.count(1)

    async def start(self) -> None:
        async with self._session_lock:
            if self._session is not None and not self._session.closed:
                return
            headers = {
                "User-Agent": self._user_agent,
                "Accept": "application/json",
                "Accept-Encoding": "gzip",
            }
            self._session = aiohttp.ClientSession(headers=headers)
            self._owns_session = True

    async def close(self) -> None:
        async with self._session_lock:
            if self._owns_session and self._session is not None and not self._session.closed:
                await self._session.close()
            self._session = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        return self._session

    def _timeout(self, timeout: float | None) -> aiohttp.ClientTimeout:
        total = timeout if timeout is not None else self._default_timeout
        return aiohttp.ClientTimeout(total=total, connect=min(self._connect_timeout, total))

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any | None = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float | None = None,
        allow_retry: bool = True,
    ) -> Any:
        session = await self._ensure_session()
        while True:
            async with session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=dict(headers or {}),
                timeout=self._timeout(timeout),
            ) as resp:
                if resp.status == 429 or resp.status >= 500:
                    if allow_retry:
                        allow_retry = False
                        log.debug("Retrying %s %s after HTTP %s", method, url, resp.status)
                        await asyncio.sleep(self._jitter())
                        continue
                    raise HTTPError(resp.status, url)
                if resp.status >= 400:
                    raise HTTPError(resp.status, url, await resp.text())
                return await resp.json(content_type=None)

    async def get_json(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request_json("GET", url, params=params, headers=headers, timeout=timeout)

    async def rpc(
        self,
        url: str,
        method: str,
        params: Any,
        *,
        timeout: float | None = None,
    ) -> Any:
        """POST a JSON-RPC 2.0 call and return its ``result`` member."""

        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": f"hot-tokens-{next(self._ids)}",
            "method": method,
            "params": params,
        }
        data = await self.request_json(
            "POST",
            url,
            json_body=payload,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
        if not isinstance(data, Mapping):
            raise JsonRpcError(f"Unexpected {method} response type {type(data).__name__}")
        if data.get("error"):
            raise JsonRpcError(f"{method} failed: {data['error']}")
        return data.get("result")

    @staticmethod
    def _jitter() -> float:
        return random.uniform(0.05, 0.15)


__all__ = ["HTTPError", "HttpClient", "JsonRpcError"]
