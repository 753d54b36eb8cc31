"""
Transaction status polling.

A monitored signature is checked at a fixed interval until the chain reports
it confirmed or failed, or the attempt budget runs out. Polls for the same
monitoring id are serialized and a record never returns to pending.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from mintguard.config import settings
from mintguard.errors import RecordNotFoundError
from mintguard.models.monitoring import (
    EVENT_TRANSACTION_STATUS,
    SignatureStatus,
    TransactionRecord,
    TransactionStatus,
    utcnow,
)
from .datasource.solana import EndpointSelector, SolanaGateway
from .locks import KeyedLocks
from .store import MonitoringStore, new_id

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class TransactionStatusPoller:
    def __init__(
        self,
        store: MonitoringStore,
        selector: EndpointSelector,
        dispatcher: Any,
        interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
        gateway_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._store = store
        self._selector = selector
        self._dispatcher = dispatcher
        self._interval_ms = interval_ms if interval_ms is not None else settings.poll_interval_ms
        self._max_attempts = max_attempts if max_attempts is not None else settings.poll_max_attempts
        self._sleep = sleep
        self._gateway_factory = gateway_factory or SolanaGateway
        self._locks = KeyedLocks()
        self._tasks: Dict[str, asyncio.Task] = {}

    def register(self, signature: str, addresses: Optional[Iterable[str]] = None) -> TransactionRecord:
        record = TransactionRecord(
            monitoring_id=new_id("mon"),
            signature=signature,
            addresses=list(addresses or ()),
        )
        self._store.add_transaction(record)
        logger.info("Monitoring %s... as %s", signature[:16], record.monitoring_id)
        return record

    def get(self, monitoring_id: str) -> TransactionRecord:
        record = self._store.get_transaction(monitoring_id)
        if record is None:
            raise RecordNotFoundError(f"Monitoring record {monitoring_id} not found")
        return record

    async def check_once(self, signature: str) -> Optional[SignatureStatus]:
        """
        Query the chain once. Connectivity problems count as "no status yet"
        for this attempt rather than aborting the poll.
        """
        try:
            async with self._selector.connect() as (client, _url):
                gateway = self._gateway_factory(client, None, self._store)
                return await gateway.get_signature_status(signature)
        except Exception as exc:
            logger.warning("Status check for %s... failed: %s", signature[:16], exc)
            return None

    async def poll(
        self,
        signature: str,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
        monitoring_id: Optional[str] = None,
        addresses: Optional[Iterable[str]] = None,
    ) -> TransactionRecord:
        """
        Poll ``signature`` until finality or ``max_attempts`` checks.

        confirmed/finalized -> Confirmed, chain error -> Failed (payload kept),
        nothing final after the last attempt -> Unknown.
        """
        record = self._store.get_transaction(monitoring_id) if monitoring_id else None
        if record is None:
            record = self.register(signature, addresses)
        max_attempts = max_attempts if max_attempts is not None else self._max_attempts
        interval_ms = interval_ms if interval_ms is not None else self._interval_ms

        async with self._locks.hold(record.monitoring_id):
            if record.is_final:
                return record

            for attempt in range(1, max_attempts + 1):
                record.check_count += 1
                record.last_check_time = utcnow()
                status = await self.check_once(record.signature)

                if status is not None:
                    record.confirmation_status = status.confirmation_status
                    record.slot = status.slot
                    if status.err is not None:
                        record.error = status.err
                        self._transition(record, TransactionStatus.FAILED)
                        return record
                    if status.is_final:
                        self._transition(record, TransactionStatus.CONFIRMED)
                        return record

                if attempt < max_attempts:
                    await self._sleep(interval_ms / 1000)

            self._transition(record, TransactionStatus.UNKNOWN)
            return record

    def _transition(self, record: TransactionRecord, status: TransactionStatus) -> None:
        previous = record.status
        if not record.transition(status):
            return

        log = logger.info if status == TransactionStatus.CONFIRMED else logger.warning
        log(
            "Transaction %s... %s after %d check(s)",
            record.signature[:16],
            status.value,
            record.check_count,
        )
        self._dispatcher.dispatch(
            EVENT_TRANSACTION_STATUS,
            {
                "monitoringId": record.monitoring_id,
                "signature": record.signature,
                "status": status.value,
                "previousStatus": previous.value,
                "confirmationStatus": record.confirmation_status,
                "slot": record.slot,
                "error": record.error,
                "checkCount": record.check_count,
                "addresses": record.addresses,
            },
        )

    # Background monitoring

    @property
    def active(self) -> int:
        """Number of background polls still running"""
        return len(self._tasks)

    def monitor(
        self,
        signature: str,
        addresses: Optional[Iterable[str]] = None,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> TransactionRecord:
        """Register ``signature`` and poll it in a task that outlives the request."""
        record = self.register(signature, addresses)
        self.start_background(record.monitoring_id, max_attempts, interval_ms)
        return record

    def start_background(
        self,
        monitoring_id: str,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> asyncio.Task:
        record = self.get(monitoring_id)
        task = asyncio.create_task(
            self.poll(record.signature, max_attempts, interval_ms, monitoring_id=monitoring_id),
            name=f"poll-{monitoring_id}",
        )
        self._tasks[monitoring_id] = task
        task.add_done_callback(lambda t, mid=monitoring_id: self._on_done(mid, t))
        return task

    async def wait(self, monitoring_id: str) -> TransactionRecord:
        """
        Outcome of the poll for ``monitoring_id``.

        Waits for its background task when one is running; a record that is
        still pending afterwards is polled in place, never re-registered.
        """
        task = self._tasks.get(monitoring_id)
        if task is not None:
            await asyncio.wait({task})
        record = self.get(monitoring_id)
        if not record.is_final:
            record = await self.poll(record.signature, monitoring_id=monitoring_id)
        return record

    def _on_done(self, monitoring_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(monitoring_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background poll %s crashed: %s", monitoring_id, exc, exc_info=exc)
        self._store.prune()

    def cancel(self, monitoring_id: str) -> bool:
        """Stop background polling for ``monitoring_id`` and evict its record."""
        task = self._tasks.pop(monitoring_id, None)
        if task is not None:
            task.cancel()
        record = self._store.remove_transaction(monitoring_id)
        if record is None and task is None:
            raise RecordNotFoundError(f"Monitoring record {monitoring_id} not found")
        logger.info("Cancelled monitoring %s", monitoring_id)
        return task is not None

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
