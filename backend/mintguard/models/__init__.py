"""Data models for MintGuard"""

from .token import (
    AuthorityRevocation,
    AuthorityType,
    AuthorityVerification,
    MintAccountInfo,
    MintFailure,
    MintRequest,
    MintResult,
    MintStage,
)
from .monitoring import (
    MetadataValidation,
    NotificationType,
    RetryRecord,
    RetryStatus,
    SignatureStatus,
    TransactionAnalysis,
    TransactionRecord,
    TransactionStatus,
    Webhook,
)
from .api import (
    CreateTokenRequest,
    CreateTokenResponse,
    CreatedToken,
    MonitorTransactionRequest,
    MonitorTransactionResponse,
    MonitoringInfo,
    RegisterWebhookRequest,
    RegisterWebhookResponse,
)

__all__ = [
    "AuthorityRevocation",
    "AuthorityType",
    "AuthorityVerification",
    "MintAccountInfo",
    "MintFailure",
    "MintRequest",
    "MintResult",
    "MintStage",
    "MetadataValidation",
    "NotificationType",
    "RetryRecord",
    "RetryStatus",
    "SignatureStatus",
    "TransactionAnalysis",
    "TransactionRecord",
    "TransactionStatus",
    "Webhook",
    "CreateTokenRequest",
    "CreateTokenResponse",
    "CreatedToken",
    "MonitorTransactionRequest",
    "MonitorTransactionResponse",
    "MonitoringInfo",
    "RegisterWebhookRequest",
    "RegisterWebhookResponse",
]
