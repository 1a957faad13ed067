from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Iterable

DEFAULT_FORMAT = "%(asctime)sZ [%(levelname)s] %(name)s:%(lineno)d (tid=%(threadName)s) | %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "aiohttp.access", "werkzeug")

_HANDLER_SENTINEL = "_hot_tokens_stdout_handler"


class _UTCFormatter(logging.Formatter):
    """Formatter that renders timestamps in UTC."""

    converter = time.gmtime


_LOG_RECORD_RESERVED = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__.keys())


class JsonFormatter(logging.Formatter):
    """Structured logging formatter producing one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .replace(tzinfo=None)
            .isoformat(timespec="milliseconds")
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        # Fields passed through ``extra=``.
        for key, value in record.__dict__.items():
            if key in payload or key.startswith("_") or key in _LOG_RECORD_RESERVED:
                continue
            payload[key] = value

        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def setup_logging(
    level: int | str = logging.INFO,
    *,
    json_logs: bool = False,
    quiet: Iterable[str] = _NOISY_LOGGERS,
) -> logging.Handler:
    """Install a single stdout handler on the root logger.

    Calling this again replaces the formatter and level of the existing
    handler instead of stacking another one.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    handler = getattr(root, _HANDLER_SENTINEL, None)
    if handler is None or handler not in root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        root.addHandler(handler)
        setattr(root, _HANDLER_SENTINEL, handler)

    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(_UTCFormatter(DEFAULT_FORMAT, DEFAULT_DATEFMT))
    handler.setLevel(level)

    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return handler


__all__ = ["JsonFormatter", "setup_logging"]
