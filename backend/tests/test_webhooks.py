"""Tests for webhook registration, matching and delivery"""

import json
import logging

import httpx
import pytest

from mintguard.errors import InvalidWebhookUrlError, RecordNotFoundError
from mintguard.models.monitoring import (
    DEFAULT_NOTIFICATION_TYPES,
    EVENT_TOKEN_MINTED,
    EVENT_TRANSACTION_STATUS,
    NotificationType,
)
from mintguard.services.webhooks import WebhookDispatcher, WebhookRegistry, payload_addresses


@pytest.fixture
def registry(store):
    return WebhookRegistry(store)


def recording_client(status_code=200, received=None, error=None):
    received = received if received is not None else []

    def handler(request):
        if error is not None:
            raise error
        received.append((str(request.url), json.loads(request.content)))
        return httpx.Response(status_code)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), received


class TestWebhookRegistry:
    """Test registration and subscription matching"""

    def test_register_defaults(self, registry):
        """Test that omitted notification types fall back to the defaults"""
        webhook = registry.register("https://hooks.example.com/mint")

        assert webhook.webhook_id.startswith("wh_")
        assert webhook.enabled
        assert webhook.notification_types == set(DEFAULT_NOTIFICATION_TYPES)

    @pytest.mark.parametrize("url", ["", "not a url", "ftp://hooks.example.com", "https://"])
    def test_invalid_url_rejected(self, registry, url):
        with pytest.raises(InvalidWebhookUrlError):
            registry.register(url)

    def test_type_filter(self, registry):
        """Test that a TOKEN_MINT-only webhook never receives transaction.status"""
        webhook = registry.register("https://hooks.example.com", notification_types=[NotificationType.TOKEN_MINT])

        assert registry.matching(EVENT_TRANSACTION_STATUS, {"signature": "abc"}) == []
        assert registry.matching(EVENT_TOKEN_MINTED, {"mintAddress": "mintX"}) == [webhook]

    def test_address_filter(self, registry):
        """Test that an address-scoped webhook only matches payloads naming that address"""
        webhook = registry.register("https://hooks.example.com", addresses=["mintX"])

        assert registry.matching(EVENT_TOKEN_MINTED, {"mintAddress": "mintY"}) == []
        assert registry.matching(EVENT_TOKEN_MINTED, {"mintAddress": "mintX"}) == [webhook]

    def test_address_filter_uses_address_list(self, registry):
        webhook = registry.register(
            "https://hooks.example.com",
            addresses=["mintX"],
            notification_types=[NotificationType.TRANSACTION_STATUS],
        )

        assert registry.matching(EVENT_TRANSACTION_STATUS, {"signature": "sig", "addresses": ["mintX"]}) == [webhook]

    def test_payload_filters(self, registry):
        """Test equality and any-of filters on payload keys"""
        exact = registry.register("https://a.example.com", filters={"symbol": "GRD"})
        any_of = registry.register("https://b.example.com", filters={"symbol": ["GRD", "MNT"]})

        assert registry.matching(EVENT_TOKEN_MINTED, {"symbol": "GRD"}) == [exact, any_of]
        assert registry.matching(EVENT_TOKEN_MINTED, {"symbol": "MNT"}) == [any_of]
        assert registry.matching(EVENT_TOKEN_MINTED, {"symbol": "XYZ"}) == []

    def test_disabled_webhook_is_skipped(self, registry):
        webhook = registry.register("https://hooks.example.com")
        registry.disable(webhook.webhook_id)

        assert registry.get(webhook.webhook_id).enabled is False
        assert registry.matching(EVENT_TOKEN_MINTED, {"mintAddress": "mintX"}) == []
        assert registry.list_webhooks() == [webhook]

    def test_unknown_event_matches_nothing(self, registry):
        registry.register("https://hooks.example.com")
        assert registry.matching("token.burned", {}) == []

    def test_get_unknown_webhook(self, registry):
        with pytest.raises(RecordNotFoundError):
            registry.get("wh_missing")

    def test_payload_addresses(self):
        found = payload_addresses({"mintAddress": "m", "signature": "s", "addresses": ["a", None], "slot": 5})
        assert found == {"m", "s", "a"}


class TestWebhookDispatcher:
    """Test best-effort delivery"""

    @pytest.mark.asyncio
    async def test_delivers_envelope(self, registry):
        """Test that a matching webhook receives event, timestamp, data and webhookId"""
        client, received = recording_client()
        webhook = registry.register("https://hooks.example.com/mint", addresses=["mintX"])
        dispatcher = WebhookDispatcher(registry, http_client=client, workers=2)

        queued = dispatcher.dispatch(EVENT_TOKEN_MINTED, {"mintAddress": "mintX", "supply": 1000})
        await dispatcher.drain()
        await dispatcher.close()

        assert queued == 1
        assert len(received) == 1
        url, body = received[0]
        assert url == "https://hooks.example.com/mint"
        assert body["event"] == EVENT_TOKEN_MINTED
        assert body["webhookId"] == webhook.webhook_id
        assert body["data"] == {"mintAddress": "mintX", "supply": 1000}
        assert body["timestamp"]

    @pytest.mark.asyncio
    async def test_no_match_queues_nothing(self, registry):
        client, received = recording_client()
        registry.register("https://hooks.example.com", addresses=["mintX"])
        dispatcher = WebhookDispatcher(registry, http_client=client)

        assert dispatcher.dispatch(EVENT_TOKEN_MINTED, {"mintAddress": "mintY"}) == 0
        await dispatcher.drain()

        assert received == []

    @pytest.mark.asyncio
    async def test_non_2xx_is_logged_not_raised(self, registry, caplog):
        """Test that a failing callback does not propagate into the caller"""
        client, received = recording_client(status_code=500)
        registry.register("https://hooks.example.com")
        dispatcher = WebhookDispatcher(registry, http_client=client)

        with caplog.at_level(logging.WARNING, logger="mintguard.services.webhooks"):
            dispatcher.dispatch(EVENT_TOKEN_MINTED, {"mintAddress": "mintX"})
            await dispatcher.drain()
        await dispatcher.close()

        assert len(received) == 1
        assert "HTTP 500" in caplog.text

    @pytest.mark.asyncio
    async def test_network_error_is_logged(self, registry, caplog):
        client, _ = recording_client(error=httpx.ConnectError("connection refused"))
        registry.register("https://hooks.example.com")
        dispatcher = WebhookDispatcher(registry, http_client=client)

        with caplog.at_level(logging.WARNING, logger="mintguard.services.webhooks"):
            dispatcher.dispatch(EVENT_TOKEN_MINTED, {"mintAddress": "mintX"})
            await dispatcher.drain()
        await dispatcher.close()

        assert "delivery of token.minted" in caplog.text

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, registry):
        client, received = recording_client()
        registry.register("https://a.example.com")
        registry.register("https://b.example.com")
        dispatcher = WebhookDispatcher(registry, http_client=client, workers=1, queue_size=1)

        queued = dispatcher.dispatch(EVENT_TOKEN_MINTED, {"mintAddress": "mintX"})
        await dispatcher.drain()
        await dispatcher.close()

        assert queued == 1
        assert len(received) == 1
