"""
Sequential mint workflow.

create mint -> associated account + initial supply -> optional revocations
-> optional read-back verification. Steps never overlap, every step resolves
its own RPC endpoint, and whatever was committed on chain before a failure is
returned to the caller.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, List, Optional

from solders.keypair import Keypair

from mintguard.errors import (
    AuthorityRevocationError,
    MintGuardError,
    SigningWalletUnavailableError,
    SupplyIssuanceError,
    TransactionFailedError,
)
from mintguard.models.token import (
    AuthorityRevocation,
    AuthorityType,
    AuthorityVerification,
    MintFailure,
    MintRequest,
    MintResult,
    MintStage,
)
from .datasource.solana import EndpointSelector, SolanaGateway

logger = logging.getLogger(__name__)

GatewayFactory = Callable[..., Any]

_REVOKED_STAGE = {
    AuthorityType.MINT: MintStage.MINT_AUTHORITY_REVOKED,
    AuthorityType.FREEZE: MintStage.FREEZE_AUTHORITY_REVOKED,
}


def _error_code(exc: Exception, default: str) -> str:
    return exc.code if isinstance(exc, MintGuardError) else default


def _failed_signature(exc: Exception) -> Optional[str]:
    return exc.signature if isinstance(exc, TransactionFailedError) else None


def _reason(exc: Exception) -> str:
    if isinstance(exc, MintGuardError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class MintOrchestrator:
    """Runs one MintRequest at a time through the mint state machine."""

    def __init__(
        self,
        selector: EndpointSelector,
        payer: Optional[Keypair],
        store: Any = None,
        gateway_factory: Optional[GatewayFactory] = None,
    ) -> None:
        self._selector = selector
        self._payer = payer
        self._store = store
        self._gateway_factory = gateway_factory or SolanaGateway

    @asynccontextmanager
    async def _gateway(self) -> AsyncIterator[Any]:
        async with self._selector.connect() as (client, _url):
            yield self._gateway_factory(client, self._payer, self._store)

    async def execute(self, request: MintRequest) -> MintResult:
        """
        Run the full sequence for ``request``.

        Never raises for on-chain failures: the returned MintResult carries
        the signatures produced so far plus the errors that stopped or
        degraded the sequence. Raises SigningWalletUnavailableError when no
        signing wallet is configured, since nothing can be attempted.
        """
        if self._payer is None:
            raise SigningWalletUnavailableError("No signing wallet configured (SOLANA_PRIVATE_KEY)")

        completed: List[MintStage] = []
        warnings: List[str] = []
        errors: List[MintFailure] = []
        revocations: List[AuthorityRevocation] = []
        fields = dict(
            name=request.name,
            symbol=request.symbol,
            decimals=request.decimals,
            supply=request.supply,
        )

        # Init -> MintCreated
        logger.info("🚀 Creating mint for %s (%s), decimals=%d", request.name, request.symbol, request.decimals)
        try:
            async with self._gateway() as gateway:
                mint_address, mint_signature = await gateway.create_mint(request.decimals)
        except Exception as exc:
            logger.error("Mint creation failed for %s: %s", request.symbol, _reason(exc))
            errors.append(
                MintFailure(
                    code=_error_code(exc, "TRANSACTION_FAILED"),
                    message=f"Mint creation failed: {_reason(exc)}",
                    stage=MintStage.MINT_CREATED,
                    signature=_failed_signature(exc),
                )
            )
            pending_mint = getattr(exc, "mint_address", None)
            if pending_mint is not None:
                warnings.append(
                    f"Mint {pending_mint} was submitted but not confirmed and may still appear on chain; "
                    "check it before resubmitting the mint request"
                )
            return MintResult(**fields, stage=MintStage.FAILED, warnings=warnings, errors=errors)

        completed.append(MintStage.MINT_CREATED)
        logger.info("✅ Mint created: %s (%s...)", mint_address, mint_signature[:16])

        # MintCreated -> SupplyIssued
        token_account: Optional[str] = None
        token_account_signature: Optional[str] = None
        supply_signature: Optional[str] = None
        try:
            async with self._gateway() as gateway:
                token_account, token_account_signature = await gateway.get_or_create_associated_account(
                    mint_address, request.creator_address
                )
            async with self._gateway() as gateway:
                supply_signature = await gateway.mint_to(mint_address, token_account, request.base_units)
        except Exception as exc:
            failure = SupplyIssuanceError(mint_address, _reason(exc))
            logger.error("%s (mint %s)", failure.message, mint_address)
            warnings.append(f"Mint {mint_address} exists without supply; do not resubmit the mint request")
            errors.append(
                MintFailure(
                    code=failure.code,
                    message=failure.message,
                    stage=MintStage.SUPPLY_ISSUED,
                    signature=_failed_signature(exc),
                )
            )
            return MintResult(
                **fields,
                mint_address=mint_address,
                creator_token_account=token_account,
                mint_signature=mint_signature,
                token_account_signature=token_account_signature,
                stage=MintStage.FAILED,
                completed_stages=completed,
                warnings=warnings,
                errors=errors,
            )

        completed.append(MintStage.SUPPLY_ISSUED)
        logger.info("✅ Issued %d base units to %s", request.base_units, token_account)

        # Optional revocations, each independent of the other
        for authority in request.revocations:
            try:
                async with self._gateway() as gateway:
                    signature = await gateway.revoke_authority(mint_address, authority)
            except Exception as exc:
                failure = AuthorityRevocationError(authority.value, _reason(exc))
                logger.error("%s (mint %s)", failure.message, mint_address)
                warnings.append(f"{failure.message}; the authority is still held by the service wallet")
                errors.append(
                    MintFailure(
                        code=failure.code,
                        message=failure.message,
                        stage=_REVOKED_STAGE[authority],
                        authority=authority,
                        signature=_failed_signature(exc),
                    )
                )
                continue

            revocations.append(
                AuthorityRevocation(type=authority, signature=signature, timestamp=datetime.now(timezone.utc))
            )
            completed.append(_REVOKED_STAGE[authority])
            logger.info("🔒 Revoked %s authority on %s", authority.value, mint_address)

        verification: Optional[AuthorityVerification] = None
        if request.revocations:
            verification = await self._verify(mint_address, revocations, warnings)
            if verification is not None:
                completed.append(MintStage.VERIFIED)

        return MintResult(
            **fields,
            mint_address=mint_address,
            creator_token_account=token_account,
            mint_signature=mint_signature,
            token_account_signature=token_account_signature,
            supply_signature=supply_signature,
            authority_revocation_signatures=revocations,
            verification=verification,
            stage=MintStage.FAILED if errors else MintStage.DONE,
            completed_stages=completed,
            warnings=warnings,
            errors=errors,
        )

    async def _verify(
        self,
        mint_address: str,
        revocations: List[AuthorityRevocation],
        warnings: List[str],
    ) -> Optional[AuthorityVerification]:
        """Advisory read-back of the revoked authority fields. Mismatches become warnings."""
        revoked = {item.type for item in revocations}
        try:
            async with self._gateway() as gateway:
                info = await gateway.get_mint_info(mint_address)
        except Exception as exc:
            message = f"Authority verification skipped: {_reason(exc)}"
            logger.warning("%s (mint %s)", message, mint_address)
            warnings.append(message)
            return None

        if info is None:
            message = "Authority verification skipped: mint account not readable yet"
            logger.warning("%s (mint %s)", message, mint_address)
            warnings.append(message)
            return None

        mint_revoked = info.mint_authority is None if AuthorityType.MINT in revoked else None
        freeze_revoked = info.freeze_authority is None if AuthorityType.FREEZE in revoked else None
        consistent = mint_revoked is not False and freeze_revoked is not False

        for authority, state in ((AuthorityType.MINT, mint_revoked), (AuthorityType.FREEZE, freeze_revoked)):
            if state is False:
                message = f"Verification mismatch: {authority.value} authority still set after revocation"
                logger.warning("%s (mint %s)", message, mint_address)
                warnings.append(message)

        return AuthorityVerification(
            mint_authority_revoked=mint_revoked,
            freeze_authority_revoked=freeze_revoked,
            consistent=consistent,
        )

    # Resubmission entry points used by the retry scheduler

    async def reissue_supply(self, mint_address: str, creator_address: str, amount: int) -> Optional[str]:
        """Mint ``amount`` again unless the supply is already on chain. None means nothing to do."""
        async with self._gateway() as gateway:
            info = await gateway.get_mint_info(mint_address)
            if info is not None and info.supply >= amount:
                logger.info("Supply for %s already issued, nothing to resubmit", mint_address)
                return None
            token_account, _ = await gateway.get_or_create_associated_account(mint_address, creator_address)
            return await gateway.mint_to(mint_address, token_account, amount)

    async def revoke(self, mint_address: str, authority: AuthorityType) -> Optional[str]:
        """Revoke ``authority`` unless it already reads as none."""
        async with self._gateway() as gateway:
            info = await gateway.get_mint_info(mint_address)
            if info is not None:
                current = info.mint_authority if authority == AuthorityType.MINT else info.freeze_authority
                if current is None:
                    logger.info("%s authority on %s already revoked", authority.value, mint_address)
                    return None
            return await gateway.revoke_authority(mint_address, authority)

    async def rebroadcast(self, signature: str) -> str:
        async with self._gateway() as gateway:
            return await gateway.rebroadcast(signature)
