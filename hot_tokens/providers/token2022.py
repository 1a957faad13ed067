"""Token-2022 metadata extension reader over Solana JSON-RPC."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..http import HttpClient
from ..metadata import MetadataJsonResolver, TokenDisplayMetadata, fallback_image_url

log = logging.getLogger(__name__)


def _parsed_info(result: Any) -> Optional[Mapping[str, Any]]:
    value = result.get("value") if isinstance(result, Mapping) else None
    if not isinstance(value, Mapping):
        return None
    data = value.get("data")
    if not isinstance(data, Mapping):
        return None
    parsed = data.get("parsed")
    if not isinstance(parsed, Mapping):
        return None
    info = parsed.get("info")
    return info if isinstance(info, Mapping) else None


def parse_token_metadata_extension(result: Any) -> Optional[dict[str, str]]:
    """Return ``{"name", "symbol", "uri"}`` from a jsonParsed ``getAccountInfo`` result.

    Only mints carrying the ``tokenMetadata`` extension qualify; anything else
    yields ``None``.
    """

    info = _parsed_info(result)
    if info is None:
        return None
    extensions = info.get("extensions")
    if not isinstance(extensions, list):
        return None
    for extension in extensions:
        if not isinstance(extension, Mapping) or extension.get("extension") != "tokenMetadata":
            continue
        state = extension.get("state")
        if not isinstance(state, Mapping):
            return None
        return {
            "name": str(state.get("name") or "").strip(),
            "symbol": str(state.get("symbol") or "").strip(),
            "uri": str(state.get("uri") or "").strip(),
        }
    return None


class Token2022MetadataSource:
    """Read name/symbol/uri from the mint's own metadata extension.

    The image and description come from the JSON document at ``uri`` when a
    document resolver is configured; otherwise a generated badge is used.
    """

    name = "token2022"

    def __init__(
        self,
        http: HttpClient,
        *,
        rpc_url: str,
        documents: MetadataJsonResolver | None = None,
        timeout: float = 3.0,
        commitment: str = "confirmed",
    ) -> None:
        self._http = http
        self._rpc_url = rpc_url
        self._documents = documents
        self._timeout = timeout
        self._commitment = commitment

    async def __call__(self, mint: str) -> Optional[TokenDisplayMetadata]:
        result = await self._http.rpc(
            self._rpc_url,
            "getAccountInfo",
            [mint, {"encoding": "jsonParsed", "commitment": self._commitment}],
            timeout=self._timeout,
        )
        fields = parse_token_metadata_extension(result)
        if not fields or not fields["symbol"]:
            log.debug("Mint %s carries no token metadata extension", mint)
            return None
        image_url = None
        description = None
        if fields["uri"] and self._documents is not None:
            document = await self._documents.resolve(fields["uri"])
            if document is not None:
                image_url = document.image_url
                description = document.description
        return TokenDisplayMetadata(
            name=fields["name"] or fields["symbol"],
            symbol=fields["symbol"],
            image_url=image_url or fallback_image_url(fields["symbol"]),
            description=description,
        )


__all__ = ["Token2022MetadataSource", "parse_token_metadata_extension"]
