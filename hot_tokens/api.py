"""Flask HTTP boundary for the hot token ranking."""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
from typing import Any, Awaitable, Iterable, Optional, TypeVar

from flask import Flask, Response, jsonify, request

from .errors import RankingUnavailable
from .rate_limit import RateLimiter, RateLimitResult
from .service import HotTokensService

log = logging.getLogger(__name__)

T = TypeVar("T")


class ServiceRuntime:
    """Own the service objects and the event loop they run on.

    Flask handles each request on its own thread; every coroutine is
    submitted to one background loop so caches and in-flight refreshes are
    shared across requests.
    """

    def __init__(
        self,
        service: HotTokensService,
        limiter: RateLimiter,
        *,
        request_timeout: float = 60.0,
        resources: Iterable[Any] = (),
    ) -> None:
        self.service = service
        self.limiter = limiter
        self.request_timeout = request_timeout
        self._resources = list(resources)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=loop.run_forever, name="hot-tokens-loop", daemon=True)
            thread.start()
            self._loop = loop
            self._thread = thread

    def call(self, coro: Awaitable[T], timeout: float | None = None) -> T:
        """Run ``coro`` on the background loop and block for its result."""

        if not self.running:
            self.start()
        assert self._loop is not None
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout if timeout is not None else self.request_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def stop(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return
        for resource in self._resources:
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                asyncio.run_coroutine_threadsafe(close(), loop).result(5)
            except Exception:
                log.warning("Failed to close %r", resource, exc_info=True)
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5)
        with contextlib.suppress(Exception):
            loop.close()


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr or "unknown"


def _parse_limit(raw: Optional[str]) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError("limit must be a positive integer") from None
    if value <= 0:
        raise ValueError("limit must be a positive integer")
    return value


def _apply_rate_headers(response: Response, limiter: RateLimiter, result: RateLimitResult) -> Response:
    response.headers["X-RateLimit-Limit"] = str(limiter.max_requests)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(result.reset_time)
    if result.retry_after is not None:
        response.headers["Retry-After"] = str(result.retry_after)
    return response


def create_app(runtime: ServiceRuntime) -> Flask:
    """Return a Flask application serving ``runtime``'s service."""

    app = Flask(__name__)
    app.json.sort_keys = False

    @app.after_request
    def _no_store(response: Response) -> Response:
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        if "application/json" in (response.content_type or "").lower():
            response.headers["Cache-Control"] = "no-store"
        return response

    def _rate_limited() -> tuple[RateLimitResult, Optional[Response]]:
        rate = runtime.call(runtime.limiter.is_allowed(_client_ip()))
        if rate.allowed:
            return rate, None
        response = jsonify({"error": "Too many requests", **rate.to_dict()})
        response.status_code = 429
        return rate, _apply_rate_headers(response, runtime.limiter, rate)

    def _unavailable(details: str, rate: RateLimitResult) -> Response:
        response = jsonify({"error": "Failed to fetch hot tokens", "details": details})
        response.status_code = 503
        return _apply_rate_headers(response, runtime.limiter, rate)

    @app.get("/health")
    def health() -> Any:
        return jsonify({"ok": True})

    @app.get("/hot-tokens")
    def hot_tokens() -> Any:
        try:
            limit = _parse_limit(request.args.get("limit"))
        except ValueError as exc:
            return jsonify({"error": "Invalid limit parameter", "details": str(exc)}), 400

        rate, denied = _rate_limited()
        if denied is not None:
            return denied

        try:
            result = runtime.call(runtime.service.get_hot_tokens_cached(limit))
        except RankingUnavailable as exc:
            cause = exc.__cause__ or exc
            log.error("Hot token ranking unavailable: %s", cause)
            return _unavailable(str(cause), rate)
        except concurrent.futures.TimeoutError:
            log.error("Hot token ranking did not finish within %.1fs", runtime.request_timeout)
            return _unavailable(f"ranking did not finish within {runtime.request_timeout:g}s", rate)

        response = jsonify(result.to_dict())
        return _apply_rate_headers(response, runtime.limiter, rate)

    @app.get("/hot-tokens/stats")
    def hot_tokens_stats() -> Any:
        rate, denied = _rate_limited()
        if denied is not None:
            return denied
        return _apply_rate_headers(jsonify(runtime.service.stats()), runtime.limiter, rate)

    return app


__all__ = ["ServiceRuntime", "create_app"]
