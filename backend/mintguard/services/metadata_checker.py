"""Metadata accessibility checks across IPFS mirror gateways"""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from mintguard.config import settings
from mintguard.models.monitoring import MetadataValidation

logger = logging.getLogger(__name__)

NOT_CONTENT_ADDRESSED = "Not a recognized content-addressed URI"


def extract_content_id(uri: str) -> Optional[str]:
    """Return ``<cid>[/path]`` for ipfs:// and gateway-style /ipfs/ URIs."""
    value = uri.strip().split("?", 1)[0].split("#", 1)[0]
    if value.startswith("ipfs://"):
        content_id = value[len("ipfs://"):]
        if content_id.startswith("ipfs/"):
            content_id = content_id[len("ipfs/"):]
    elif "/ipfs/" in value:
        content_id = value.split("/ipfs/", 1)[1]
    else:
        return None
    content_id = content_id.strip("/")
    return content_id or None


class MetadataChecker:
    """
    Reports whether a metadata URI is retrievable from at least one gateway.

    Advisory only: callers decide whether an inaccessible URI blocks anything.
    """

    def __init__(
        self,
        gateways: Optional[List[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._gateways = list(gateways if gateways is not None else settings.metadata_gateways)
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout or settings.metadata_timeout_seconds

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def validate(self, uri: str) -> MetadataValidation:
        content_id = extract_content_id(uri)
        if content_id is None:
            return MetadataValidation(uri=uri, valid=False, reason=NOT_CONTENT_ADDRESSED)

        client = self._get_client()
        checked: List[str] = []
        for gateway in self._gateways:
            url = f"{gateway.rstrip('/')}/{content_id}"
            checked.append(url)
            try:
                response = await client.head(url, timeout=self._timeout, follow_redirects=True)
            except httpx.HTTPError as exc:
                logger.debug("Gateway probe %s failed: %s", url, exc)
                continue
            if response.is_success:
                logger.info("Metadata %s accessible via %s", content_id, url)
                return MetadataValidation(uri=uri, valid=True, accessible_via=url, checked_gateways=checked)
            logger.debug("Gateway probe %s returned HTTP %s", url, response.status_code)

        logger.warning("Metadata %s not accessible from any of %d gateways", content_id, len(checked))
        return MetadataValidation(
            uri=uri,
            valid=False,
            checked_gateways=checked,
            reason="Metadata not accessible from any gateway",
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
