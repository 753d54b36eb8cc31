"""Metrics API endpoints (Solana RPC endpoints)."""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mintguard.services.token_service import TokenService, get_token_service

router = APIRouter()


class RpcEndpointMetrics(BaseModel):
    """Liveness metadata for an RPC endpoint (URL credentials redacted)"""

    url: str
    priority: int
    enabled: bool
    last_known_good: Optional[str]
    last_failure: Optional[str]
    successes: int
    failures: int
    consecutive_failures: int
    last_error: Optional[str]


@router.get("/metrics/rpc", response_model=List[RpcEndpointMetrics])
async def get_rpc_metrics(service: TokenService = Depends(get_token_service)):
    """
    Return health metadata for all configured RPC endpoints in priority order.
    """
    return [RpcEndpointMetrics(**entry) for entry in service.selector.snapshot()]
