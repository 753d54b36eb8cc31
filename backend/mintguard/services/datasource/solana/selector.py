from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment

from mintguard.config import settings
from mintguard.errors import AllEndpointsUnreachableError

from .endpoint_registry import RpcEndpointState, build_rpc_endpoints

logger = logging.getLogger(__name__)

ClientFactory = Callable[[RpcEndpointState], Any]


def default_client_factory(endpoint: RpcEndpointState) -> AsyncClient:
    return AsyncClient(
        endpoint.url,
        commitment=Commitment(settings.solana_commitment),
        timeout=endpoint.config.request_timeout,
    )


class EndpointSelector:
    """
    Resolves a live Solana RPC connection from a ranked endpoint list.

    Candidates are probed one at a time in priority order and the first one
    that answers the liveness call wins. Probing never fans out, so a
    mutating call is only ever sent through a single endpoint.
    """

    def __init__(
        self,
        endpoints: Optional[List[RpcEndpointState]] = None,
        client_factory: Optional[ClientFactory] = None,
        liveness_timeout: Optional[float] = None,
        liveness_ttl_seconds: Optional[float] = None,
    ) -> None:
        if endpoints is None:
            endpoints = build_rpc_endpoints()
        self._endpoints = sorted(endpoints, key=lambda ep: ep.priority)
        self._client_factory = client_factory or default_client_factory
        self._liveness_timeout = (
            liveness_timeout if liveness_timeout is not None else settings.rpc_liveness_timeout
        )
        self._liveness_ttl = (
            liveness_ttl_seconds if liveness_ttl_seconds is not None else settings.rpc_liveness_ttl_seconds
        )

    @property
    def endpoints(self) -> List[RpcEndpointState]:
        return list(self._endpoints)

    def _candidates(self) -> Iterator[RpcEndpointState]:
        for endpoint in self._endpoints:
            if endpoint.config.enabled:
                yield endpoint

    async def _probe(self, endpoint: RpcEndpointState) -> Tuple[Optional[Any], Optional[str]]:
        """Open a client and run the liveness call. Returns (client, None) or (None, error)."""
        client = self._client_factory(endpoint)
        if endpoint.is_fresh(self._liveness_ttl):
            return client, None

        try:
            response = await asyncio.wait_for(client.get_version(), timeout=self._liveness_timeout)
            if response is None or getattr(response, "value", None) is None:
                raise RuntimeError("empty getVersion response")
        except asyncio.TimeoutError:
            error = f"liveness probe timed out after {self._liveness_timeout:.1f}s"
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
        else:
            endpoint.record_success()
            return client, None

        endpoint.record_failure(error)
        await _close_quietly(client)
        return None, error

    async def select_endpoint(self) -> Tuple[Any, str]:
        """
        Return ``(client, url)`` for the first live endpoint.

        Raises AllEndpointsUnreachableError when every candidate fails.
        """
        tried: List[str] = []
        last_error: Optional[str] = None

        for endpoint in self._candidates():
            tried.append(endpoint.name)
            client, error = await self._probe(endpoint)
            if client is not None:
                logger.info("✅ Using RPC endpoint %s (priority %d)", endpoint.name, endpoint.priority)
                return client, endpoint.url
            last_error = error
            logger.warning("RPC endpoint %s failed liveness: %s", endpoint.name, error)

        logger.error("All %d RPC endpoints unreachable", len(tried))
        raise AllEndpointsUnreachableError(tried, last_error)

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[Tuple[Any, str]]:
        """Resolve an endpoint for one operation step and close the client afterwards."""
        client, url = await self.select_endpoint()
        try:
            yield client, url
        finally:
            await _close_quietly(client)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [endpoint.snapshot() for endpoint in self._endpoints]


async def _close_quietly(client: Any) -> None:
    close = getattr(client, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception as exc:
        logger.debug("Error closing RPC client: %s", exc)


async def select_endpoint(
    candidates: Iterable[str],
    configured_override: Optional[str] = None,
    client_factory: Optional[ClientFactory] = None,
) -> Tuple[Any, str]:
    """One-shot selection over an explicit candidate list."""
    selector = EndpointSelector(
        endpoints=build_rpc_endpoints(candidates, configured_override),
        client_factory=client_factory,
    )
    return await selector.select_endpoint()
