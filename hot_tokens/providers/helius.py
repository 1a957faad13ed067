"""Helius DAS ``getAsset`` metadata source."""

from __future__ import annotations

from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..http import HttpClient
from ..metadata import DEFAULT_IPFS_GATEWAY, TokenDisplayMetadata, fallback_image_url, ipfs_to_http

DEFAULT_DAS_URL = "https://mainnet.helius-rpc.com"


def das_url_with_key(base: str, api_key: str | None) -> str:
    """Attach ``api-key`` to ``base`` unless it already carries one."""

    base = (base or DEFAULT_DAS_URL).strip().rstrip("/")
    if not api_key:
        return base
    parts = urlsplit(base)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.setdefault("api-key", api_key)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def _first_str(*candidates: Any) -> str:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def parse_das_asset(asset: Any, gateway: str = DEFAULT_IPFS_GATEWAY) -> Optional[TokenDisplayMetadata]:
    """Map a DAS asset object onto :class:`TokenDisplayMetadata`."""

    if not isinstance(asset, Mapping):
        return None
    content = asset.get("content") if isinstance(asset.get("content"), Mapping) else {}
    metadata = content.get("metadata") if isinstance(content.get("metadata"), Mapping) else {}
    links = content.get("links") if isinstance(content.get("links"), Mapping) else {}
    token_info = asset.get("token_info") if isinstance(asset.get("token_info"), Mapping) else {}

    symbol = _first_str(metadata.get("symbol"), token_info.get("symbol"))
    if not symbol:
        return None
    name = _first_str(metadata.get("name"), symbol)

    image = _first_str(links.get("image"))
    if not image:
        files = content.get("files")
        if isinstance(files, list):
            for item in files:
                if isinstance(item, Mapping):
                    image = _first_str(item.get("cdn_uri"), item.get("uri"))
                    if image:
                        break
    description = _first_str(metadata.get("description")) or None
    return TokenDisplayMetadata(
        name=name,
        symbol=symbol,
        image_url=ipfs_to_http(image, gateway) if image else fallback_image_url(symbol),
        description=description,
    )


class HeliusAssetSource:
    """Resolve metadata through the Helius DAS indexing API."""

    name = "helius-das"

    def __init__(
        self,
        http: HttpClient,
        *,
        url: str,
        gateway: str = DEFAULT_IPFS_GATEWAY,
        timeout: float = 3.0,
    ) -> None:
        self._http = http
        self._url = url
        self._gateway = gateway
        self._timeout = timeout

    async def __call__(self, mint: str) -> Optional[TokenDisplayMetadata]:
        result = await self._http.rpc(self._url, "getAsset", {"id": mint}, timeout=self._timeout)
        return parse_das_asset(result, self._gateway)


__all__ = ["DEFAULT_DAS_URL", "HeliusAssetSource", "das_url_with_key", "parse_das_asset"]
