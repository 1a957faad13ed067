"""Run the hot token HTTP service: ``python -m hot_tokens``."""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from werkzeug.serving import make_server

from .api import ServiceRuntime, create_app
from .config import load_config
from .http import HttpClient
from .logging_utils import setup_logging
from .service import build_counter_store, build_rate_limiter, build_service

log = logging.getLogger("hot_tokens")


def _parse_cli_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the launchpad hot token ranking over HTTP.")
    parser.add_argument("--config", default=None, help="Path to a TOML configuration file.")
    parser.add_argument("--host", default=None, help="Interface to bind (overrides config).")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (overrides config).")
    parser.add_argument("--log-level", default=None, help="Logging level (overrides config).")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_cli_args(argv)
    try:
        config = load_config(args.config)
    except ValueError as exc:
        setup_logging(logging.INFO)
        log.error("Invalid configuration: %s", exc)
        return 2

    updates = {}
    if args.host:
        updates["host"] = args.host
    if args.port:
        updates["port"] = args.port
    if args.log_level:
        updates["log_level"] = args.log_level.upper()
    if args.json_logs:
        updates["json_logs"] = True
    if updates:
        config = config.model_copy(update=updates)

    setup_logging(config.log_level, json_logs=config.json_logs)

    http = HttpClient(default_timeout=config.call_timeout)
    store = build_counter_store(config)
    runtime = ServiceRuntime(
        build_service(config, http),
        build_rate_limiter(config, store),
        request_timeout=config.request_timeout,
        resources=(http, store),
    )
    runtime.start()
    server = make_server(config.host, config.port, create_app(runtime), threaded=True)
    log.info("Serving hot tokens on http://%s:%d", config.host, server.server_port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log.info("Shutting down")
    finally:
        server.server_close()
        runtime.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
