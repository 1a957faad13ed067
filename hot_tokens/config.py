"""Service configuration: defaults, optional TOML file, then environment."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

log = logging.getLogger(__name__)

ENV_PREFIX = "HOT_TOKENS_"
CONFIG_PATH_ENV = "HOT_TOKENS_CONFIG"

# Conventional variable names honoured alongside the prefixed ones.
_ENV_ALIASES: Dict[str, str] = {
    "SOLANA_RPC_URL": "rpc_url",
    "HELIUS_API_KEY": "helius_api_key",
    "REDIS_URL": "redis_url",
    "DBC_CONFIG_KEY": "dbc_config_key",
}


class HotTokensConfig(BaseModel):
    """Validated settings for the hot token service."""

    model_config = ConfigDict(extra="ignore")

    rpc_url: str = "https://api.mainnet-beta.solana.com"
    das_url: str = "https://mainnet.helius-rpc.com"
    helius_api_key: Optional[str] = None
    indexer_url: str = "http://127.0.0.1:8787"
    dbc_config_key: Optional[str] = None
    ipfs_gateway: str = "https://ipfs.io"
    ipfs_gateway_token: Optional[str] = None
    redis_url: str = ""

    cache_ttl: float = 30.0
    metadata_ttl: float = 300.0
    metadata_cache_size: Optional[int] = 10_000
    metadata_batch_size: int = 15
    pool_concurrency: int = 8
    call_timeout: float = 5.0
    listing_timeout: float = 30.0
    metadata_timeout: float = 3.0
    request_timeout: float = 60.0

    default_limit: int = 25
    max_limit: int = 100
    rate_limit_window_ms: int = 60_000
    rate_limit_max_requests: int = 10

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    json_logs: bool = False

    @field_validator(
        "cache_ttl",
        "metadata_ttl",
        "call_timeout",
        "listing_timeout",
        "metadata_timeout",
        "request_timeout",
    )
    @classmethod
    def _positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator(
        "metadata_batch_size",
        "pool_concurrency",
        "default_limit",
        "max_limit",
        "rate_limit_window_ms",
        "rate_limit_max_requests",
    )
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("metadata_cache_size")
    @classmethod
    def _cache_size(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            return None
        return value

    @field_validator("port")
    @classmethod
    def _port_range(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator("log_level")
    @classmethod
    def _log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("helius_api_key", "dbc_config_key", "ipfs_gateway_token")
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _limits_consistent(self) -> "HotTokensConfig":
        if self.default_limit > self.max_limit:
            raise ValueError("default_limit must not exceed max_limit")
        return self


def _read_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    section = data.get("hot_tokens")
    return dict(section) if isinstance(section, Mapping) else data


def _from_env(env: Mapping[str, str]) -> Dict[str, Any]:
    fields = HotTokensConfig.model_fields
    values: Dict[str, Any] = {}
    for name, field in _ENV_ALIASES.items():
        raw = env.get(name)
        if raw not in (None, ""):
            values[field] = raw
    for key, raw in env.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_PATH_ENV:
            continue
        field = key[len(ENV_PREFIX) :].lower()
        if field in fields and raw != "":
            values[field] = raw
    return values


def load_config(
    path: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> HotTokensConfig:
    """Build :class:`HotTokensConfig` from file and environment.

    Raises ``ValueError`` when the merged values fail validation.
    """

    env = os.environ if env is None else env
    data: Dict[str, Any] = {}
    config_path = path or env.get(CONFIG_PATH_ENV)
    if config_path:
        resolved = Path(config_path).expanduser()
        if not resolved.is_file():
            raise ValueError(f"config file not found: {resolved}")
        data.update(_read_toml(resolved))
        log.debug("Loaded configuration from %s", resolved)
    data.update(_from_env(env))
    try:
        return HotTokensConfig(**data)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


__all__ = ["HotTokensConfig", "load_config"]
