"""Transaction monitoring, retry and webhook models"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import Field

from .base import CamelModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStatus(str, Enum):
    """Lifecycle of a monitored signature. Pending is left exactly once."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNKNOWN = "unknown"


class RetryStatus(str, Enum):
    WAITING = "waiting"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    SUCCEEDED = "succeeded"


class NotificationType(str, Enum):
    """Categories a webhook can subscribe to"""

    TOKEN_MINT = "TOKEN_MINT"
    TOKEN_TRANSFER = "TOKEN_TRANSFER"
    WALLET_INTERACTION = "WALLET_INTERACTION"
    TRANSACTION_STATUS = "TRANSACTION_STATUS"
    TRANSACTION_RETRY = "TRANSACTION_RETRY"


EVENT_TOKEN_MINTED = "token.minted"
EVENT_TOKEN_TRANSFERRED = "token.transferred"
EVENT_TRANSACTION_STATUS = "transaction.status"
EVENT_TRANSACTION_RETRY = "transaction.retry"
EVENT_WALLET_INTERACTION = "wallet.interaction"

EVENT_NOTIFICATION_TYPES: Dict[str, NotificationType] = {
    EVENT_TOKEN_MINTED: NotificationType.TOKEN_MINT,
    EVENT_TOKEN_TRANSFERRED: NotificationType.TOKEN_TRANSFER,
    EVENT_TRANSACTION_STATUS: NotificationType.TRANSACTION_STATUS,
    EVENT_TRANSACTION_RETRY: NotificationType.TRANSACTION_RETRY,
    EVENT_WALLET_INTERACTION: NotificationType.WALLET_INTERACTION,
}

DEFAULT_NOTIFICATION_TYPES = [
    NotificationType.TOKEN_MINT,
    NotificationType.TOKEN_TRANSFER,
    NotificationType.WALLET_INTERACTION,
]


class SignatureStatus(CamelModel):
    """Chain-reported status of a single signature"""

    signature: str
    confirmation_status: Optional[str] = Field(None, description="processed, confirmed or finalized")
    err: Optional[Any] = Field(None, description="Chain error payload, if any")
    slot: Optional[int] = None
    confirmations: Optional[int] = None

    @property
    def is_final(self) -> bool:
        return self.confirmation_status in ("confirmed", "finalized")


class TransactionRecord(CamelModel):
    """In-memory monitoring state for one signature. Mutated only by the poller."""

    monitoring_id: str
    signature: str
    status: TransactionStatus = TransactionStatus.PENDING
    start_time: datetime = Field(default_factory=utcnow)
    check_count: int = 0
    last_check_time: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    confirmation_status: Optional[str] = None
    slot: Optional[int] = None
    error: Optional[Any] = Field(None, description="Preserved chain error payload")
    addresses: List[str] = Field(default_factory=list, description="Related mint/wallet addresses")

    @property
    def is_final(self) -> bool:
        return self.status != TransactionStatus.PENDING

    def transition(self, status: TransactionStatus) -> bool:
        """Move out of Pending. Returns False (and changes nothing) if already final."""
        if self.is_final or status == TransactionStatus.PENDING:
            return False
        self.status = status
        self.finished_at = utcnow()
        return True


class RetryRecord(CamelModel):
    """Retry bookkeeping for a signature that did not reach finality"""

    retry_id: str
    original_signature: str
    monitoring_id: Optional[str] = Field(None, description="Monitoring record the retry follows, if any")
    attempts: int = 0
    max_attempts: int
    backoff_factor: float
    initial_delay: int = Field(..., description="Delay before the first attempt, in ms")
    max_delay: int = Field(..., description="Cap for any single delay, in ms")
    status: RetryStatus = RetryStatus.WAITING
    retry_signatures: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    addresses: List[str] = Field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return self.status in (RetryStatus.EXHAUSTED, RetryStatus.SUCCEEDED)

    def delay_for_attempt(self, attempt: int) -> int:
        """Delay in ms before 1-indexed attempt ``attempt``."""
        delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        return int(min(delay, self.max_delay))


class Webhook(CamelModel):
    """A registered notification target. Never auto-deleted, only disabled."""

    webhook_id: str
    url: str
    addresses: Set[str] = Field(default_factory=set)
    notification_types: Set[NotificationType] = Field(default_factory=set)
    filters: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class MetadataValidation(CamelModel):
    """Result of probing mirror gateways for a content-addressed URI"""

    uri: str
    valid: bool
    accessible_via: Optional[str] = None
    checked_gateways: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class TransactionAnalysis(CamelModel):
    """Error/warning summary derived from a confirmed transaction"""

    signature: str
    successful: bool
    timestamp: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    info: List[str] = Field(default_factory=list)
