"""Upstream data sources: metadata strategies and the pool reader."""

from .helius import HeliusAssetSource, das_url_with_key, parse_das_asset
from .pool_indexer import PoolIndexerReader
from .token2022 import Token2022MetadataSource, parse_token_metadata_extension

__all__ = [
    "HeliusAssetSource",
    "PoolIndexerReader",
    "Token2022MetadataSource",
    "das_url_with_key",
    "parse_das_asset",
    "parse_token_metadata_extension",
]
