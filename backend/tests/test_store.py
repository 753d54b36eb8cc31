"""Tests for the in-memory monitoring store"""

from datetime import timedelta

from mintguard.models.monitoring import RetryRecord, TransactionRecord, TransactionStatus, utcnow
from mintguard.services.store import MonitoringStore


class TestPrune:
    """Test retention-window eviction"""

    def test_signed_payloads_expire(self, store, signature_factory):
        """Test that broadcast bytes are dropped once the retention window passes"""
        for _ in range(50):
            store.remember_sent(signature_factory(), b"\x01" * 64)

        assert store.prune() == 0
        assert len(store.sent_transactions) == 50

        assert store.prune(now=utcnow() + timedelta(hours=2)) == 50
        assert store.sent_transactions == {}

    def test_pending_records_are_kept(self, signature_factory):
        store = MonitoringStore(retention_seconds=60)
        pending = store.add_transaction(TransactionRecord(monitoring_id="mon_pending", signature=signature_factory()))
        done = store.add_transaction(TransactionRecord(monitoring_id="mon_done", signature=signature_factory()))
        done.transition(TransactionStatus.CONFIRMED)
        retry = store.add_retry(
            RetryRecord(
                retry_id="retry_open",
                original_signature=pending.signature,
                max_attempts=3,
                backoff_factor=2.0,
                initial_delay=1000,
                max_delay=60000,
            )
        )

        removed = store.prune(now=utcnow() + timedelta(minutes=5))

        assert removed == 1
        assert list(store.transactions) == ["mon_pending"]
        assert store.get_retry(retry.retry_id) is retry

    def test_sent_payload_lookup(self, store, signature_factory):
        sig = signature_factory()
        store.remember_sent(sig, b"raw")

        assert store.sent_payload(sig) == b"raw"
        assert store.sent_payload(signature_factory()) is None
