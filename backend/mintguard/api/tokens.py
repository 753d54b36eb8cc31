"""Token creation, monitoring and webhook API endpoints"""

import logging
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from solders.pubkey import Pubkey

from mintguard.errors import MintGuardError
from mintguard.models.api import (
    CreatedToken,
    CreateTokenRequest,
    CreateTokenResponse,
    MonitoringStatusResponse,
    MonitorTransactionRequest,
    MonitorTransactionResponse,
    RegisterWebhookRequest,
    RegisterWebhookResponse,
    RetryStatusResponse,
    TokenInfoResponse,
    TransactionAnalysisResponse,
    TransactionDetailsResponse,
    WebhookListResponse,
    WebhookNotificationAck,
)
from mintguard.models.monitoring import (
    EVENT_TOKEN_MINTED,
    EVENT_TOKEN_TRANSFERRED,
    EVENT_TRANSACTION_STATUS,
    Webhook,
    utcnow,
)
from mintguard.services.token_service import TokenService, get_token_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _creation_outcome(token: CreatedToken) -> Tuple[int, CreateTokenResponse]:
    """
    Map a mint result to an HTTP status.

    201 complete, 207 minted with a failed revocation, 502 minted without
    supply, 502/503 when no mint exists.
    """
    if token.succeeded:
        return 201, CreateTokenResponse(success=True, token=token)

    first = token.errors[0]
    error = "; ".join(failure.message for failure in token.errors)
    if not token.created:
        status_code = 503 if first.code == "RPC_UNAVAILABLE" else 502
    elif token.supply_signature is None:
        status_code = 502
    else:
        status_code = 207
    return status_code, CreateTokenResponse(success=False, token=token, error=error, code=first.code)


def _dump(model: Any) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


@router.post("", response_model=CreateTokenResponse, status_code=201)
async def create_token(
    body: CreateTokenRequest,
    service: TokenService = Depends(get_token_service),
):
    """
    Create a fungible token and optionally monitor it

    Runs mint creation, supply issuance and the requested authority
    revocations in order. When monitoring is enabled the final signature is
    polled in the background and, with a webhookUrl, events are pushed to it.

    Example: POST /api/tokens
    """
    try:
        mint_request = body.to_mint_request()
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    try:
        validation = None
        if body.uri and "ipfs" in body.uri:
            validation = await service.validate_metadata(body.uri)
            if not validation.valid and service.reject_inaccessible_metadata:
                logger.warning("Rejecting token %s: metadata %s invalid", body.symbol, body.uri)
                return JSONResponse(
                    status_code=400,
                    content={
                        "success": False,
                        "error": f"Invalid metadata URI: {validation.reason}",
                        "code": "METADATA_INACCESSIBLE",
                        "validation": _dump(validation),
                    },
                )

        logger.info(f"Creating token {body.symbol} for {body.creator_wallet}")
        token = await service.create_token(body, mint_request, validation)
        status_code, response = _creation_outcome(token)
        return JSONResponse(status_code=status_code, content=_dump(response))

    except MintGuardError:
        raise
    except Exception as e:
        logger.error(f"Failed to create token: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create token: {str(e)}")


@router.post("/webhook", response_model=RegisterWebhookResponse)
async def register_webhook(
    body: RegisterWebhookRequest,
    service: TokenService = Depends(get_token_service),
):
    """Register a webhook for token and transaction events"""
    webhook = service.registry.register(
        body.url,
        addresses=body.addresses,
        notification_types=body.notification_types,
        filters=body.filters,
    )
    return RegisterWebhookResponse(success=True, webhook_id=webhook.webhook_id, url=webhook.url)


@router.post("/webhook/notify", response_model=WebhookNotificationAck)
async def receive_notification(request: Request):
    """
    Inbound notification receiver

    Always answers 200 so the sender never retries on our account.
    """
    try:
        body = await request.json()
        event = body.get("event")
        data = body.get("data") or {}

        if event == EVENT_TRANSACTION_STATUS:
            logger.info("Transaction status update: %s -> %s", data.get("signature"), data.get("status"))
        elif event == EVENT_TOKEN_MINTED:
            logger.info("Token minted notification: %s", data.get("mintAddress"))
        elif event == EVENT_TOKEN_TRANSFERRED:
            logger.info(
                "Token transfer notification: %s -> %s (%s)",
                data.get("from"),
                data.get("to"),
                data.get("amount"),
            )
        else:
            logger.warning(f"Unknown webhook event: {event}")

        return WebhookNotificationAck(success=True, event=event, received=utcnow().isoformat())

    except Exception as e:
        logger.error(f"Failed to process webhook notification: {e}")
        return WebhookNotificationAck(success=False, error=str(e))


@router.post("/webhook/{webhook_id}/disable", response_model=Webhook)
async def disable_webhook(
    webhook_id: str,
    service: TokenService = Depends(get_token_service),
):
    """Disable a webhook. Webhooks are never deleted."""
    return service.registry.disable(webhook_id)


@router.get("/webhooks", response_model=WebhookListResponse)
async def list_webhooks(service: TokenService = Depends(get_token_service)):
    return WebhookListResponse(success=True, webhooks=service.registry.list_webhooks())


@router.post("/monitor", response_model=MonitorTransactionResponse)
async def monitor_transaction(
    body: MonitorTransactionRequest,
    service: TokenService = Depends(get_token_service),
):
    """
    Begin polling a signature until it confirms, fails or times out

    Polling runs in the background; the monitoringId can be queried or
    cancelled afterwards.
    """
    logger.info(f"Monitoring transaction: {body.signature}")
    return service.monitor_transaction(body)


@router.get("/monitor/{monitoring_id}", response_model=MonitoringStatusResponse)
async def get_monitoring_status(
    monitoring_id: str,
    service: TokenService = Depends(get_token_service),
):
    return MonitoringStatusResponse(success=True, record=service.poller.get(monitoring_id))


@router.delete("/monitor/{monitoring_id}")
async def cancel_monitoring(
    monitoring_id: str,
    service: TokenService = Depends(get_token_service),
):
    """Stop background polling and forget the record"""
    was_running = service.poller.cancel(monitoring_id)
    return {"success": True, "monitoringId": monitoring_id, "cancelled": was_running}


@router.get("/retry/{retry_id}", response_model=RetryStatusResponse)
async def get_retry_status(
    retry_id: str,
    service: TokenService = Depends(get_token_service),
):
    return RetryStatusResponse(success=True, record=service.retries.get(retry_id))


@router.get("/transaction/{signature}", response_model=TransactionDetailsResponse)
async def get_transaction_details(
    signature: str,
    service: TokenService = Depends(get_token_service),
):
    """
    Fetch raw transaction detail

    Example: GET /api/tokens/transaction/5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnb...
    """
    try:
        details = await service.debug.get_transaction_details(signature)
        return TransactionDetailsResponse(success=True, signature=signature, details=details)

    except MintGuardError:
        raise
    except Exception as e:
        logger.error(f"Failed to get transaction {signature}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get transaction: {str(e)}")


@router.get("/analyze/{signature}", response_model=TransactionAnalysisResponse)
async def analyze_transaction(
    signature: str,
    service: TokenService = Depends(get_token_service),
):
    """Derive an error/warning summary for a confirmed transaction"""
    analysis = await service.debug.analyze(signature)
    return TransactionAnalysisResponse(success=True, signature=signature, analysis=analysis)


@router.get("/{mint_address}", response_model=TokenInfoResponse)
async def get_token_info(
    mint_address: str,
    service: TokenService = Depends(get_token_service),
):
    """Decimals, supply and authorities of a mint (authorities are null once revoked)"""
    try:
        Pubkey.from_string(mint_address)
    except Exception:
        raise HTTPException(status_code=400, detail=f"Invalid mint address: {mint_address}")

    try:
        info = await service.get_token_info(mint_address)
        return TokenInfoResponse(success=True, token=info)

    except MintGuardError:
        raise
    except Exception as e:
        logger.error(f"Failed to get token info for {mint_address}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get token info: {str(e)}")
