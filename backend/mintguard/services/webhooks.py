"""
Webhook registry and best-effort dispatcher.

Deliveries go through a bounded queue drained by a fixed pool of workers, so
a slow or dead callback URL can never block or fail the operation that
produced the event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

import httpx
from fastapi.encoders import jsonable_encoder

from mintguard.config import settings
from mintguard.errors import InvalidWebhookUrlError, RecordNotFoundError
from mintguard.models.monitoring import (
    DEFAULT_NOTIFICATION_TYPES,
    EVENT_NOTIFICATION_TYPES,
    NotificationType,
    Webhook,
    utcnow,
)
from .store import MonitoringStore, new_id

logger = logging.getLogger(__name__)

# Payload keys compared against a webhook's address set
ADDRESS_KEYS = ("mintAddress", "address", "signature", "originalSignature", "from", "to")


def payload_addresses(payload: Dict[str, Any]) -> Set[str]:
    found: Set[str] = set()
    for key in ADDRESS_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            found.add(value)
    extra = payload.get("addresses")
    if isinstance(extra, (list, tuple, set)):
        found.update(str(item) for item in extra if item)
    return found


def _filters_match(filters: Dict[str, Any], payload: Dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = payload.get(key)
        if isinstance(expected, (list, tuple, set)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class WebhookRegistry:
    """Registered callback targets. Webhooks are only ever disabled, never deleted."""

    def __init__(self, store: MonitoringStore) -> None:
        self._store = store

    @staticmethod
    def validate_url(url: str) -> str:
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidWebhookUrlError(f"Invalid webhook URL: {url!r}")
        return url.strip()

    def register(
        self,
        url: str,
        addresses: Optional[Iterable[str]] = None,
        notification_types: Optional[Iterable[NotificationType]] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Webhook:
        """Store a webhook. Only the URL shape is checked; liveness is not probed."""
        webhook = Webhook(
            webhook_id=new_id("wh"),
            url=self.validate_url(url),
            addresses=set(addresses or ()),
            notification_types=set(notification_types or DEFAULT_NOTIFICATION_TYPES),
            filters=dict(filters or {}),
        )
        self._store.add_webhook(webhook)
        logger.info(
            "Registered webhook %s -> %s (types=%s)",
            webhook.webhook_id,
            webhook.url,
            ",".join(sorted(t.value for t in webhook.notification_types)),
        )
        return webhook

    def get(self, webhook_id: str) -> Webhook:
        webhook = self._store.get_webhook(webhook_id)
        if webhook is None:
            raise RecordNotFoundError(f"Webhook {webhook_id} not found")
        return webhook

    def disable(self, webhook_id: str) -> Webhook:
        webhook = self.get(webhook_id)
        webhook.enabled = False
        logger.info("Disabled webhook %s", webhook_id)
        return webhook

    def list_webhooks(self) -> List[Webhook]:
        return self._store.list_webhooks()

    def matching(self, event: str, payload: Dict[str, Any]) -> List[Webhook]:
        notification_type = EVENT_NOTIFICATION_TYPES.get(event)
        if notification_type is None:
            logger.debug("No notification type mapped for event %s", event)
            return []

        addresses = payload_addresses(payload)
        targets = []
        for webhook in self._store.list_webhooks():
            if not webhook.enabled or notification_type not in webhook.notification_types:
                continue
            if webhook.addresses and not (webhook.addresses & addresses):
                continue
            if not _filters_match(webhook.filters, payload):
                continue
            targets.append(webhook)
        return targets


class WebhookDispatcher:
    """Fans events out to matching webhooks through a bounded worker pool."""

    def __init__(
        self,
        registry: WebhookRegistry,
        http_client: Optional[httpx.AsyncClient] = None,
        workers: Optional[int] = None,
        queue_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._client = http_client
        self._owns_client = http_client is None
        self._worker_count = max(1, workers or settings.webhook_workers)
        self._queue_size = queue_size or settings.webhook_queue_size
        self._timeout = timeout or settings.webhook_timeout_seconds
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    def _ensure_workers(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._queue_size)
        if not self._workers:
            self._workers = [
                asyncio.create_task(self._worker(idx), name=f"webhook-worker-{idx}")
                for idx in range(self._worker_count)
            ]
        return self._queue

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def dispatch(self, event: str, payload: Dict[str, Any]) -> int:
        """
        Queue ``event`` for every matching webhook and return how many were queued.

        Never raises and never waits on delivery.
        """
        targets = self._registry.matching(event, payload)
        if not targets:
            return 0

        queue = self._ensure_workers()
        timestamp = utcnow().isoformat()
        data = jsonable_encoder(payload)
        queued = 0
        for webhook in targets:
            envelope = {
                "event": event,
                "timestamp": timestamp,
                "data": data,
                "webhookId": webhook.webhook_id,
            }
            try:
                queue.put_nowait((webhook, envelope))
                queued += 1
            except asyncio.QueueFull:
                logger.warning("Webhook queue full, dropping %s for %s", event, webhook.webhook_id)
        logger.debug("Queued %s for %d webhook(s)", event, queued)
        return queued

    async def _worker(self, idx: int) -> None:
        assert self._queue is not None
        while True:
            webhook, envelope = await self._queue.get()
            try:
                await self._deliver(webhook, envelope)
            finally:
                self._queue.task_done()

    async def _deliver(self, webhook: Webhook, envelope: Dict[str, Any]) -> None:
        client = self._get_client()
        try:
            response = await client.post(webhook.url, json=envelope, timeout=self._timeout)
        except Exception as exc:
            logger.warning(
                "Webhook %s delivery of %s to %s failed: %s",
                webhook.webhook_id,
                envelope["event"],
                webhook.url,
                exc,
            )
            return

        if response.is_success:
            logger.debug("✅ Webhook %s accepted %s", webhook.webhook_id, envelope["event"])
        else:
            logger.warning(
                "Webhook %s returned HTTP %s for %s",
                webhook.webhook_id,
                response.status_code,
                envelope["event"],
            )

    async def drain(self) -> None:
        """Wait until every queued delivery has been attempted."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        workers: Tuple[asyncio.Task, ...] = tuple(self._workers)
        self._workers = []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
