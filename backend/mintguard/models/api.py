"""API request and response models"""

from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from solders.signature import Signature

from .base import CamelModel
from .monitoring import (
    MetadataValidation,
    NotificationType,
    RetryRecord,
    TransactionAnalysis,
    TransactionRecord,
    Webhook,
)
from .token import MintAccountInfo, MintRequest, MintResult


# Request Models


class CreateTokenRequest(CamelModel):
    """Request to create a token, optionally with monitoring"""

    name: str = Field(..., description="Token name")
    symbol: str = Field(..., description="Token symbol")
    uri: Optional[str] = Field(None, description="Off-chain metadata URI")
    decimals: int = Field(default=9, description="Decimal places")
    supply: int = Field(default=1_000_000_000, description="Initial supply in whole tokens")
    creator_wallet: str = Field(..., description="Wallet receiving the initial supply")
    revoke_mint_authority: bool = Field(default=False)
    revoke_freeze_authority: bool = Field(default=False)
    webhook_url: Optional[str] = Field(None, description="Receives token and transaction events")
    enable_transaction_monitoring: bool = Field(default=False)
    enable_auto_retry: bool = Field(default=False)

    def to_mint_request(self) -> MintRequest:
        return MintRequest(
            name=self.name,
            symbol=self.symbol,
            decimals=self.decimals,
            supply=self.supply,
            creator_address=self.creator_wallet,
            uri=self.uri,
            revoke_mint_authority=self.revoke_mint_authority,
            revoke_freeze_authority=self.revoke_freeze_authority,
        )


class RegisterWebhookRequest(CamelModel):
    """Request to register a notification webhook"""

    url: str = Field(..., description="Callback URL receiving JSON POSTs")
    addresses: List[str] = Field(default_factory=list, description="Only notify for these addresses")
    notification_types: Optional[List[NotificationType]] = Field(
        None, description="Defaults to TOKEN_MINT, TOKEN_TRANSFER, WALLET_INTERACTION"
    )
    filters: Dict[str, Any] = Field(default_factory=dict, description="Payload key equality filters")


class MonitorTransactionRequest(CamelModel):
    """Request to poll a signature until finality"""

    signature: str = Field(..., min_length=1, description="Transaction signature")
    webhook_url: Optional[str] = Field(None, description="Receives transaction.status events")
    max_retries: Optional[int] = Field(None, ge=1, le=10, description="Retry attempts when retry is enabled")
    retry_enabled: bool = Field(default=False)

    @field_validator("signature")
    @classmethod
    def _valid_signature(cls, value: str) -> str:
        try:
            Signature.from_string(value)
        except Exception:
            raise ValueError("not a valid base58 transaction signature")
        return value


# Response Models


class MonitoringInfo(CamelModel):
    """Monitoring attached to a freshly created token"""

    enabled: bool
    webhook_id: Optional[str] = None
    monitoring_id: Optional[str] = None
    retry_enabled: bool = False
    retry_id: Optional[str] = None
    error: Optional[str] = None


class CreatedToken(MintResult):
    """Mint result plus monitoring information"""

    monitoring: Optional[MonitoringInfo] = None
    metadata_validation: Optional[MetadataValidation] = None


class CreateTokenResponse(CamelModel):
    success: bool
    token: Optional[CreatedToken] = Field(None, description="Present whenever a mint address exists")
    error: Optional[str] = None
    code: Optional[str] = None


class RegisterWebhookResponse(CamelModel):
    success: bool
    webhook_id: str
    url: str
    status: str = "active"


class WebhookListResponse(CamelModel):
    success: bool
    webhooks: List[Webhook]


class MonitorTransactionResponse(CamelModel):
    success: bool
    monitoring_id: str
    signature: str
    status: str = "monitoring"
    webhook_id: Optional[str] = None
    retry_enabled: bool = False
    retry_id: Optional[str] = None


class MonitoringStatusResponse(CamelModel):
    success: bool
    record: TransactionRecord


class RetryStatusResponse(CamelModel):
    success: bool
    record: RetryRecord


class TransactionDetailsResponse(CamelModel):
    success: bool
    signature: str
    details: Dict[str, Any]


class TransactionAnalysisResponse(CamelModel):
    success: bool
    signature: str
    analysis: TransactionAnalysis


class TokenInfoResponse(CamelModel):
    success: bool
    token: MintAccountInfo


class WebhookNotificationAck(CamelModel):
    success: bool
    event: Optional[str] = None
    received: Optional[str] = None
    error: Optional[str] = None
