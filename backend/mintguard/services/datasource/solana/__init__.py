"""
Solana RPC datasource package.

Exposes endpoint ranking, live-endpoint selection and the transaction
gateway. Higher-level services should import from this package rather than
individual submodules.
"""

from .endpoint_registry import RpcEndpointState, build_rpc_endpoints, redact_url
from .selector import EndpointSelector, select_endpoint
from .gateway import SolanaGateway

__all__ = [
    "EndpointSelector",
    "RpcEndpointState",
    "SolanaGateway",
    "build_rpc_endpoints",
    "redact_url",
    "select_endpoint",
]
