"""
Retry scheduling with exponential backoff.

Each retry record owns a resubmitter: a coroutine function that re-runs the
logical operation and returns the new signature, or None when the chain
already reflects the intended state. Attempts only start once the original
signature has been polled to a non-confirmed outcome, and the original is
checked again before every attempt so a late confirmation ends the retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from mintguard.config import settings
from mintguard.errors import RecordNotFoundError, ResubmissionUnavailableError
from mintguard.models.monitoring import (
    EVENT_TRANSACTION_RETRY,
    RetryRecord,
    RetryStatus,
    TransactionRecord,
    TransactionStatus,
    utcnow,
)
from .locks import KeyedLocks
from .status_poller import Sleep, TransactionStatusPoller
from .store import MonitoringStore, new_id

logger = logging.getLogger(__name__)

Resubmitter = Callable[[], Awaitable[Optional[str]]]


class RetryScheduler:
    def __init__(
        self,
        store: MonitoringStore,
        poller: TransactionStatusPoller,
        dispatcher: Any,
        max_attempts: Optional[int] = None,
        backoff_factor: Optional[float] = None,
        initial_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        rebroadcast: Optional[Callable[[str], Awaitable[str]]] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._poller = poller
        self._dispatcher = dispatcher
        self._max_attempts = max_attempts if max_attempts is not None else settings.retry_max_attempts
        self._backoff_factor = backoff_factor if backoff_factor is not None else settings.retry_backoff_factor
        self._initial_delay_ms = (
            initial_delay_ms if initial_delay_ms is not None else settings.retry_initial_delay_ms
        )
        self._max_delay_ms = max_delay_ms if max_delay_ms is not None else settings.retry_max_delay_ms
        self._rebroadcast = rebroadcast
        self._sleep = sleep
        self._resubmitters: Dict[str, Resubmitter] = {}
        self._locks = KeyedLocks()
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule_retry(
        self,
        original_signature: str,
        resubmit: Optional[Resubmitter] = None,
        max_attempts: Optional[int] = None,
        backoff_factor: Optional[float] = None,
        initial_delay_ms: Optional[int] = None,
        addresses: Optional[Iterable[str]] = None,
        check_original: bool = True,
        monitoring_id: Optional[str] = None,
        start: bool = True,
    ) -> RetryRecord:
        """
        Create a retry record for ``original_signature``.

        Without an explicit resubmitter the signed bytes this process sent for
        the signature are rebroadcast. With ``start`` the attempt loop runs as
        a background task; otherwise call ``run`` directly.

        With ``check_original`` the original signature is polled to an outcome
        first (through ``monitoring_id`` when it is already monitored) and the
        record succeeds without any attempt if it confirms. Without it the
        attempts start at once, for steps that never produced a signature.
        """
        record = RetryRecord(
            retry_id=new_id("retry"),
            original_signature=original_signature,
            monitoring_id=monitoring_id,
            max_attempts=max_attempts if max_attempts is not None else self._max_attempts,
            backoff_factor=backoff_factor if backoff_factor is not None else self._backoff_factor,
            initial_delay=initial_delay_ms if initial_delay_ms is not None else self._initial_delay_ms,
            max_delay=self._max_delay_ms,
            addresses=list(addresses or ()),
        )
        self._store.add_retry(record)
        self._resubmitters[record.retry_id] = resubmit or self._default_resubmitter(original_signature)
        logger.info(
            "Scheduled retry %s for %s... (max %d, factor %.1f, initial %dms)",
            record.retry_id,
            original_signature[:16],
            record.max_attempts,
            record.backoff_factor,
            record.initial_delay,
        )

        if start:
            task = asyncio.create_task(
                self.run(record.retry_id, check_original=check_original),
                name=f"retry-{record.retry_id}",
            )
            self._tasks[record.retry_id] = task
            task.add_done_callback(lambda t, rid=record.retry_id: self._on_done(rid, t))
        return record

    def _default_resubmitter(self, signature: str) -> Resubmitter:
        async def resubmit() -> Optional[str]:
            if self._rebroadcast is None:
                raise ResubmissionUnavailableError(f"No way to resubmit {signature}")
            return await self._rebroadcast(signature)

        return resubmit

    def get(self, retry_id: str) -> RetryRecord:
        record = self._store.get_retry(retry_id)
        if record is None:
            raise RecordNotFoundError(f"Retry record {retry_id} not found")
        return record

    async def run(self, retry_id: str, check_original: bool = True) -> RetryRecord:
        """Drive ``retry_id`` to Succeeded or Exhausted. Attempts never overlap."""
        record = self.get(retry_id)
        async with self._locks.hold(retry_id):
            try:
                await self._run_attempts(record, check_original)
            finally:
                if record.is_final:
                    self._resubmitters.pop(retry_id, None)
        return record

    async def _run_attempts(self, record: RetryRecord, check_original: bool) -> None:
        if record.is_final:
            return
        retry_id = record.retry_id

        if check_original and record.attempts == 0:
            original = await self._original_outcome(record)
            if original.status == TransactionStatus.CONFIRMED:
                logger.info("Original %s... confirmed; no retry needed", record.original_signature[:16])
                self._finish(record, RetryStatus.SUCCEEDED)
                return
            if original.error is not None:
                record.last_error = f"Original transaction failed: {original.error}"

        resubmit = self._resubmitters.get(retry_id) or self._default_resubmitter(record.original_signature)

        while record.attempts < record.max_attempts:
            attempt = record.attempts + 1
            delay_ms = record.delay_for_attempt(attempt)
            self._set_status(record, RetryStatus.WAITING)
            await self._sleep(delay_ms / 1000)

            if check_original:
                landed = await self._landed_signature(record)
                if landed is not None:
                    logger.info("Retry %s: %s... confirmed late", retry_id, landed[:16])
                    self._finish(record, RetryStatus.SUCCEEDED, signature=landed)
                    return

            record.attempts = attempt
            self._set_status(record, RetryStatus.RETRYING)
            logger.info(
                "Retry %s attempt %d/%d after %dms",
                retry_id,
                attempt,
                record.max_attempts,
                delay_ms,
            )

            try:
                signature = await resubmit()
            except Exception as exc:
                record.last_error = str(exc) or exc.__class__.__name__
                logger.warning("Retry %s attempt %d failed: %s", retry_id, attempt, record.last_error)
                continue

            if signature is None:
                logger.info("Retry %s: operation already reflected on chain", retry_id)
                self._finish(record, RetryStatus.SUCCEEDED)
                return

            record.retry_signatures.append(signature)
            outcome = await self._poller.poll(signature, addresses=record.addresses)
            if outcome.status == TransactionStatus.CONFIRMED:
                self._finish(record, RetryStatus.SUCCEEDED, signature=signature)
                return

            record.last_error = f"Attempt {attempt} ended {outcome.status.value}"
            if outcome.error is not None:
                record.last_error = f"{record.last_error}: {outcome.error}"
            logger.warning("Retry %s: %s", retry_id, record.last_error)

        logger.error(
            "Retry %s exhausted after %d attempts; manual intervention required",
            retry_id,
            record.attempts,
        )
        self._finish(record, RetryStatus.EXHAUSTED)

    async def _original_outcome(self, record: RetryRecord) -> TransactionRecord:
        """Poll outcome of the original signature, reusing its monitoring record when there is one."""
        if record.monitoring_id is not None:
            try:
                return await self._poller.wait(record.monitoring_id)
            except RecordNotFoundError:
                logger.info("Monitoring %s was cancelled; polling the original directly", record.monitoring_id)
        return await self._poller.poll(record.original_signature, addresses=record.addresses)

    async def _landed_signature(self, record: RetryRecord) -> Optional[str]:
        """First of the original or earlier retry signatures the chain now reports confirmed."""
        for signature in [record.original_signature, *record.retry_signatures]:
            status = await self._poller.check_once(signature)
            if status is not None and status.err is None and status.is_final:
                return signature
        return None

    def _set_status(self, record: RetryRecord, status: RetryStatus, signature: Optional[str] = None) -> None:
        if record.status == status:
            return
        record.status = status
        self._dispatcher.dispatch(
            EVENT_TRANSACTION_RETRY,
            {
                "retryId": record.retry_id,
                "originalSignature": record.original_signature,
                "status": status.value,
                "attempts": record.attempts,
                "maxAttempts": record.max_attempts,
                "signature": signature,
                "retrySignatures": list(record.retry_signatures),
                "lastError": record.last_error,
                "addresses": record.addresses,
            },
        )

    def _finish(self, record: RetryRecord, status: RetryStatus, signature: Optional[str] = None) -> None:
        record.finished_at = utcnow()
        self._set_status(record, status, signature)

    def _on_done(self, retry_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(retry_id, None)
        self._resubmitters.pop(retry_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Retry task %s crashed: %s", retry_id, exc, exc_info=exc)
        self._store.prune()

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
