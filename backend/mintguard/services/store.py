"""
In-memory arena for monitoring, retry and webhook state.

Every component receives the same store instance instead of touching
module-level dictionaries, so swapping in a persistent backend only means
replacing this class.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from mintguard.models.monitoring import RetryRecord, TransactionRecord, Webhook, utcnow

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class MonitoringStore:
    """Process-wide state. Created empty at startup, lost on restart."""

    def __init__(self, retention_seconds: int = 3600) -> None:
        self.transactions: Dict[str, TransactionRecord] = {}
        self.retries: Dict[str, RetryRecord] = {}
        self.webhooks: Dict[str, Webhook] = {}
        # signature -> (signed wire bytes this process broadcast, time sent)
        self.sent_transactions: Dict[str, Tuple[bytes, datetime]] = {}
        self._retention = timedelta(seconds=retention_seconds)

    # Transactions

    def add_transaction(self, record: TransactionRecord) -> TransactionRecord:
        self.transactions[record.monitoring_id] = record
        return record

    def get_transaction(self, monitoring_id: str) -> Optional[TransactionRecord]:
        return self.transactions.get(monitoring_id)

    def remove_transaction(self, monitoring_id: str) -> Optional[TransactionRecord]:
        return self.transactions.pop(monitoring_id, None)

    # Retries

    def add_retry(self, record: RetryRecord) -> RetryRecord:
        self.retries[record.retry_id] = record
        return record

    def get_retry(self, retry_id: str) -> Optional[RetryRecord]:
        return self.retries.get(retry_id)

    # Webhooks

    def add_webhook(self, webhook: Webhook) -> Webhook:
        self.webhooks[webhook.webhook_id] = webhook
        return webhook

    def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        return self.webhooks.get(webhook_id)

    def list_webhooks(self) -> List[Webhook]:
        return list(self.webhooks.values())

    # Signed payloads

    def remember_sent(self, signature: str, raw: bytes) -> None:
        self.sent_transactions[signature] = (raw, utcnow())

    def sent_payload(self, signature: str) -> Optional[bytes]:
        entry = self.sent_transactions.get(signature)
        return entry[0] if entry is not None else None

    def prune(self, now: Optional[datetime] = None) -> int:
        """
        Evict finalized monitoring and retry records, and signed payloads,
        older than the retention window.
        """
        cutoff = (now or utcnow()) - self._retention
        stale_tx = [
            key
            for key, record in self.transactions.items()
            if record.is_final and record.finished_at and record.finished_at < cutoff
        ]
        stale_retry = [
            key
            for key, record in self.retries.items()
            if record.is_final and record.finished_at and record.finished_at < cutoff
        ]
        for key in stale_tx:
            del self.transactions[key]
        for key in stale_retry:
            del self.retries[key]
        stale_sent = [key for key, (_raw, sent_at) in self.sent_transactions.items() if sent_at < cutoff]
        for key in stale_sent:
            del self.sent_transactions[key]

        removed = len(stale_tx) + len(stale_retry) + len(stale_sent)
        if removed:
            logger.debug("Pruned %d stale monitoring/retry records and signed payloads", removed)
        return removed
