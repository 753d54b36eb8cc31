"""
Token service: wires the mint workflow to monitoring, retries and webhooks.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, List, Optional

import httpx
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mintguard.config import settings
from mintguard.errors import InvalidWebhookUrlError, RecordNotFoundError
from mintguard.models.api import (
    CreatedToken,
    CreateTokenRequest,
    MonitoringInfo,
    MonitorTransactionRequest,
    MonitorTransactionResponse,
)
from mintguard.models.monitoring import (
    EVENT_TOKEN_MINTED,
    MetadataValidation,
    NotificationType,
    RetryRecord,
)
from mintguard.models.token import AuthorityType, MintAccountInfo, MintRequest, MintResult
from .datasource.solana import EndpointSelector, SolanaGateway
from .metadata_checker import MetadataChecker
from .mint_orchestrator import MintOrchestrator
from .retry_scheduler import Resubmitter, RetryScheduler
from .status_poller import Sleep, TransactionStatusPoller
from .store import MonitoringStore
from .transaction_debug import TransactionDebugService
from .webhooks import WebhookDispatcher, WebhookRegistry

logger = logging.getLogger(__name__)

TOKEN_WEBHOOK_TYPES = [
    NotificationType.TOKEN_MINT,
    NotificationType.TOKEN_TRANSFER,
    NotificationType.TRANSACTION_STATUS,
]
MONITOR_WEBHOOK_TYPES = [NotificationType.TRANSACTION_STATUS]


def load_signing_keypair(secret: str) -> Optional[Keypair]:
    """
    Load the minting wallet from a base58 secret key or a JSON byte array.

    Returns None when no credential is configured or it cannot be parsed; the
    service still starts but cannot create tokens.
    """
    secret = (secret or "").strip()
    if not secret:
        logger.warning("SOLANA_PRIVATE_KEY not set; token creation disabled")
        return None
    try:
        if secret.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(secret)))
        return Keypair.from_base58_string(secret)
    except (ValueError, TypeError) as e:
        logger.error(f"Invalid SOLANA_PRIVATE_KEY: {e}. Token creation disabled.")
        return None


class TokenService:
    """High-level entry point used by the API routes"""

    def __init__(
        self,
        store: Optional[MonitoringStore] = None,
        selector: Optional[EndpointSelector] = None,
        payer: Optional[Keypair] = None,
        gateway_factory: Optional[Callable[..., Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store or MonitoringStore(settings.monitoring_retention_seconds)
        self.selector = selector or EndpointSelector()
        gateway_factory = gateway_factory or SolanaGateway
        self._gateway_factory = gateway_factory

        self.registry = WebhookRegistry(self.store)
        self.dispatcher = WebhookDispatcher(self.registry, http_client=http_client)
        self.orchestrator = MintOrchestrator(self.selector, payer, self.store, gateway_factory)
        self.poller = TransactionStatusPoller(
            self.store, self.selector, self.dispatcher, sleep=sleep, gateway_factory=gateway_factory
        )
        self.retries = RetryScheduler(
            self.store,
            self.poller,
            self.dispatcher,
            rebroadcast=self.orchestrator.rebroadcast,
            sleep=sleep,
        )
        self.metadata = MetadataChecker(http_client=http_client)
        self.debug = TransactionDebugService(self.selector, gateway_factory)
        self.reject_inaccessible_metadata = settings.metadata_reject_inaccessible

    async def init(self) -> None:
        await self.debug.init_redis()

    async def close(self) -> None:
        await self.retries.close()
        await self.poller.close()
        await self.dispatcher.close()
        await self.metadata.close()
        await self.debug.close_redis()

    # Token creation

    async def validate_metadata(self, uri: str) -> MetadataValidation:
        return await self.metadata.validate(uri)

    async def create_token(
        self,
        request: CreateTokenRequest,
        mint_request: Optional[MintRequest] = None,
        metadata_validation: Optional[MetadataValidation] = None,
    ) -> CreatedToken:
        """Run the mint workflow and attach monitoring when requested."""
        mint_request = mint_request or request.to_mint_request()
        result = await self.orchestrator.execute(mint_request)

        monitoring: Optional[MonitoringInfo] = None
        if result.created and request.enable_transaction_monitoring:
            monitoring = self._attach_monitoring(request, mint_request, result)

        return CreatedToken.model_validate(
            {
                **result.model_dump(),
                "monitoring": monitoring,
                "metadata_validation": metadata_validation,
            }
        )

    def _attach_monitoring(
        self,
        request: CreateTokenRequest,
        mint_request: MintRequest,
        result: MintResult,
    ) -> MonitoringInfo:
        """Webhook registration, token.minted event, background poll and optional retry."""
        mint_address = result.mint_address
        info = MonitoringInfo(enabled=True)

        if request.webhook_url:
            types = list(TOKEN_WEBHOOK_TYPES)
            if request.enable_auto_retry:
                types.append(NotificationType.TRANSACTION_RETRY)
            try:
                webhook = self.registry.register(
                    request.webhook_url, addresses=[mint_address], notification_types=types
                )
                info.webhook_id = webhook.webhook_id
            except InvalidWebhookUrlError as exc:
                logger.warning("Skipping webhook for %s: %s", mint_address, exc.message)
                info.error = exc.message

        self.dispatcher.dispatch(
            EVENT_TOKEN_MINTED,
            {
                "mintAddress": mint_address,
                "name": result.name,
                "symbol": result.symbol,
                "decimals": result.decimals,
                "supply": result.supply,
                "creatorWallet": mint_request.creator_address,
                "creatorTokenAccount": result.creator_token_account,
                "signature": result.final_signature,
                "authorityRevocations": [item.type.value for item in result.authority_revocation_signatures],
                "complete": result.succeeded,
            },
        )

        record = self.poller.monitor(result.final_signature, addresses=[mint_address])
        info.monitoring_id = record.monitoring_id

        if request.enable_auto_retry:
            retry = self._schedule_mint_retry(mint_request, result, record.monitoring_id)
            info.retry_enabled = True
            info.retry_id = retry.retry_id
        return info

    def _schedule_mint_retry(
        self, mint_request: MintRequest, result: MintResult, monitoring_id: str
    ) -> RetryRecord:
        """Retry the final transaction once its background poll misses, or re-run the failed steps."""
        mint_address = result.mint_address
        failed_signature = next((f.signature for f in result.errors if f.signature), None)
        if not result.errors:
            return self.retries.schedule_retry(
                result.final_signature, addresses=[mint_address], monitoring_id=monitoring_id
            )

        return self.retries.schedule_retry(
            failed_signature or result.final_signature,
            resubmit=self._step_resubmitter(mint_request, result),
            addresses=[mint_address],
            # a late confirmation of the failed signature only settles a single failed step
            check_original=failed_signature is not None and len(result.errors) == 1,
        )

    def _step_resubmitter(self, mint_request: MintRequest, result: MintResult) -> Resubmitter:
        """Re-run the steps the mint workflow did not complete."""
        mint_address = result.mint_address
        supply_pending = result.supply_signature is None
        if supply_pending:
            authorities: List[AuthorityType] = list(mint_request.revocations)
        else:
            authorities = [f.authority for f in result.errors if f.authority is not None]

        async def resubmit() -> Optional[str]:
            signature: Optional[str] = None
            if supply_pending:
                signature = await self.orchestrator.reissue_supply(
                    mint_address, mint_request.creator_address, mint_request.base_units
                )
            for authority in authorities:
                signature = await self.orchestrator.revoke(mint_address, authority) or signature
            return signature

        return resubmit

    # Monitoring

    def monitor_transaction(self, request: MonitorTransactionRequest) -> MonitorTransactionResponse:
        webhook_id: Optional[str] = None
        if request.webhook_url:
            types = list(MONITOR_WEBHOOK_TYPES)
            if request.retry_enabled:
                types.append(NotificationType.TRANSACTION_RETRY)
            webhook = self.registry.register(
                request.webhook_url, addresses=[request.signature], notification_types=types
            )
            webhook_id = webhook.webhook_id

        record = self.poller.monitor(request.signature)
        retry_id: Optional[str] = None
        if request.retry_enabled:
            retry = self.retries.schedule_retry(
                request.signature, max_attempts=request.max_retries, monitoring_id=record.monitoring_id
            )
            retry_id = retry.retry_id

        return MonitorTransactionResponse(
            success=True,
            monitoring_id=record.monitoring_id,
            signature=request.signature,
            webhook_id=webhook_id,
            retry_enabled=request.retry_enabled,
            retry_id=retry_id,
        )

    # Lookups

    async def get_token_info(self, mint_address: str) -> MintAccountInfo:
        Pubkey.from_string(mint_address)
        async with self.selector.connect() as (client, _url):
            gateway = self._gateway_factory(client, None, self.store)
            info = await gateway.get_mint_info(mint_address)
        if info is None:
            raise RecordNotFoundError(f"Mint account {mint_address} not found")
        return info


# Global service instance
_service: Optional[TokenService] = None


async def get_token_service() -> TokenService:
    """Get or create global TokenService instance"""
    global _service
    if _service is None:
        _service = TokenService(payer=load_signing_keypair(settings.solana_private_key))
        await _service.init()
    return _service


async def close_token_service() -> None:
    global _service
    if _service is not None:
        await _service.close()
        _service = None
