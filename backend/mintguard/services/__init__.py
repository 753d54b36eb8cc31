"""Services for MintGuard"""

from .mint_orchestrator import MintOrchestrator
from .retry_scheduler import RetryScheduler
from .status_poller import TransactionStatusPoller
from .store import MonitoringStore
from .token_service import TokenService, get_token_service
from .webhooks import WebhookDispatcher, WebhookRegistry

__all__ = [
    "MintOrchestrator",
    "MonitoringStore",
    "RetryScheduler",
    "TokenService",
    "TransactionStatusPoller",
    "WebhookDispatcher",
    "WebhookRegistry",
    "get_token_service",
]
