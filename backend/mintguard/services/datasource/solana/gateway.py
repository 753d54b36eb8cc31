from __future__ import annotations

import asyncio
import json
import logging
import struct
import time
from typing import Any, Dict, List, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    AuthorityType as SplAuthorityType,
    InitializeMintParams,
    MintToParams,
    SetAuthorityParams,
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to,
    set_authority,
)

from mintguard.config import settings
from mintguard.errors import (
    ResubmissionUnavailableError,
    SigningWalletUnavailableError,
    TransactionFailedError,
    TransactionTimeoutError,
)
from mintguard.models.monitoring import SignatureStatus
from mintguard.models.token import AuthorityType, MintAccountInfo

logger = logging.getLogger(__name__)

# SPL token mint account size
MINT_LEN = 82

_SPL_AUTHORITIES = {
    AuthorityType.MINT: SplAuthorityType.MINT_TOKENS,
    AuthorityType.FREEZE: SplAuthorityType.FREEZE_ACCOUNT,
}


def parse_mint_account(mint_address: str, data: bytes) -> MintAccountInfo:
    """Decode the 82-byte SPL mint layout."""
    if len(data) < MINT_LEN:
        raise ValueError(f"Mint account too short: {len(data)} bytes")
    offset = 0
    mint_auth_opt = struct.unpack_from("<I", data, offset)[0]
    offset += 4
    mint_authority = str(Pubkey.from_bytes(data[offset:offset + 32])) if mint_auth_opt else None
    offset += 32
    supply = struct.unpack_from("<Q", data, offset)[0]
    offset += 8
    decimals = data[offset]
    offset += 1
    is_initialized = data[offset] == 1
    offset += 1
    freeze_opt = struct.unpack_from("<I", data, offset)[0]
    offset += 4
    freeze_authority = str(Pubkey.from_bytes(data[offset:offset + 32])) if freeze_opt else None
    return MintAccountInfo(
        mint_address=mint_address,
        decimals=decimals,
        supply=supply,
        mint_authority=mint_authority,
        freeze_authority=freeze_authority,
        is_initialized=is_initialized,
    )


def _enum_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).split(".")[-1].lower()


def _error_payload(err: Any) -> Any:
    if err is None:
        return None
    to_json = getattr(err, "to_json", None)
    if to_json is not None:
        try:
            return json.loads(to_json())
        except (TypeError, ValueError):
            pass
    return str(err)


class SolanaGateway:
    """
    Chain operations over one resolved RPC connection.

    Every mutating call builds a legacy transaction signed by the payer,
    broadcasts it once and waits for ``confirmed`` commitment before
    returning the signature.
    """

    def __init__(
        self,
        client: AsyncClient,
        payer: Optional[Keypair] = None,
        store: Any = None,
        confirm_timeout: Optional[float] = None,
        confirm_poll_interval: Optional[float] = None,
    ) -> None:
        self._client = client
        self._payer = payer
        self._store = store
        self._commitment = Commitment(settings.solana_commitment)
        self._confirm_timeout = confirm_timeout or settings.rpc_confirm_timeout_seconds
        self._confirm_poll_interval = confirm_poll_interval or settings.rpc_confirm_poll_interval

    @property
    def payer(self) -> Keypair:
        if self._payer is None:
            raise SigningWalletUnavailableError("No signing wallet configured (SOLANA_PRIVATE_KEY)")
        return self._payer

    # Mutating operations

    async def create_mint(self, decimals: int) -> Tuple[str, str]:
        """Allocate and initialize a mint. Both authorities start as the payer."""
        payer = self.payer
        mint = Keypair()
        rent = await self._client.get_minimum_balance_for_rent_exemption(MINT_LEN)
        instructions = [
            create_account(
                CreateAccountParams(
                    from_pubkey=payer.pubkey(),
                    to_pubkey=mint.pubkey(),
                    lamports=rent.value,
                    space=MINT_LEN,
                    owner=TOKEN_PROGRAM_ID,
                )
            ),
            initialize_mint(
                InitializeMintParams(
                    decimals=decimals,
                    program_id=TOKEN_PROGRAM_ID,
                    mint=mint.pubkey(),
                    mint_authority=payer.pubkey(),
                    freeze_authority=payer.pubkey(),
                )
            ),
        ]
        try:
            signature = await self._send(instructions, [payer, mint])
        except TransactionTimeoutError as exc:
            exc.mint_address = str(mint.pubkey())
            raise
        return str(mint.pubkey()), signature

    async def get_or_create_associated_account(self, mint_address: str, owner: str) -> Tuple[str, Optional[str]]:
        """Return the owner's associated token account, creating it when missing."""
        mint = Pubkey.from_string(mint_address)
        owner_key = Pubkey.from_string(owner)
        ata = get_associated_token_address(owner_key, mint)

        existing = await self._client.get_account_info(ata)
        if existing.value is not None:
            return str(ata), None

        payer = self.payer
        signature = await self._send(
            [create_associated_token_account(payer.pubkey(), owner_key, mint)],
            [payer],
        )
        return str(ata), signature

    async def mint_to(self, mint_address: str, destination: str, amount: int) -> str:
        payer = self.payer
        instruction = mint_to(
            MintToParams(
                program_id=TOKEN_PROGRAM_ID,
                mint=Pubkey.from_string(mint_address),
                dest=Pubkey.from_string(destination),
                mint_authority=payer.pubkey(),
                amount=amount,
            )
        )
        return await self._send([instruction], [payer])

    async def revoke_authority(self, mint_address: str, authority: AuthorityType) -> str:
        """Set ``authority`` on the mint to none. Irreversible."""
        payer = self.payer
        instruction = set_authority(
            SetAuthorityParams(
                program_id=TOKEN_PROGRAM_ID,
                account=Pubkey.from_string(mint_address),
                authority=_SPL_AUTHORITIES[authority],
                current_authority=payer.pubkey(),
                new_authority=None,
            )
        )
        return await self._send([instruction], [payer])

    async def rebroadcast(self, signature: str) -> str:
        """Send the exact signed bytes previously broadcast for ``signature`` again."""
        raw = self._store.sent_payload(signature) if self._store is not None else None
        if raw is None:
            raise ResubmissionUnavailableError(
                f"No signed payload held for {signature}; it was not sent by this process"
            )
        resp = await self._client.send_raw_transaction(raw, opts=TxOpts(skip_preflight=True))
        sent = str(resp.value)
        logger.info("Rebroadcast transaction %s...", sent[:16])
        await self._confirm(sent)
        return sent

    # Reads

    async def get_mint_info(self, mint_address: str) -> Optional[MintAccountInfo]:
        resp = await self._client.get_account_info(Pubkey.from_string(mint_address))
        if resp.value is None:
            return None
        return parse_mint_account(mint_address, bytes(resp.value.data))

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Chain status for ``signature``, or None when no endpoint knows it yet."""
        resp = await self._client.get_signature_statuses(
            [Signature.from_string(signature)], search_transaction_history=True
        )
        value = resp.value[0] if resp.value else None
        if value is None:
            return None
        return SignatureStatus(
            signature=signature,
            confirmation_status=_enum_name(value.confirmation_status),
            err=_error_payload(value.err),
            slot=value.slot,
            confirmations=value.confirmations,
        )

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        resp = await self._client.get_transaction(
            Signature.from_string(signature),
            encoding="json",
            max_supported_transaction_version=0,
        )
        if resp.value is None:
            return None
        return json.loads(resp.value.to_json())

    # Internals

    async def _send(self, instructions: List[Instruction], signers: List[Keypair]) -> str:
        blockhash_resp = await self._client.get_latest_blockhash()
        blockhash = blockhash_resp.value.blockhash
        message = Message.new_with_blockhash(instructions, signers[0].pubkey(), blockhash)
        tx = Transaction(signers, message, blockhash)
        signature = str(tx.signatures[0])
        raw = bytes(tx)

        if self._store is not None:
            self._store.remember_sent(signature, raw)

        try:
            await self._client.send_raw_transaction(
                raw,
                opts=TxOpts(skip_confirmation=True, preflight_commitment=self._commitment),
            )
        except Exception as exc:
            raise TransactionFailedError(
                f"Transaction {signature} rejected: {exc}", signature=signature, chain_error=str(exc)
            ) from exc

        logger.debug("Sent transaction %s...", signature[:16])
        await self._confirm(signature)
        return signature

    async def _confirm(self, signature: str) -> None:
        started = time.monotonic()
        while time.monotonic() - started < self._confirm_timeout:
            try:
                status = await self.get_signature_status(signature)
            except Exception as exc:
                logger.debug("Status check failed for %s...: %s", signature[:16], exc)
                status = None

            if status is not None:
                if status.err is not None:
                    raise TransactionFailedError(
                        f"Transaction {signature} failed on chain: {status.err}",
                        signature=signature,
                        chain_error=status.err,
                    )
                if status.is_final:
                    logger.info("Transaction %s... %s", signature[:16], status.confirmation_status)
                    return
            await asyncio.sleep(self._confirm_poll_interval)

        raise TransactionTimeoutError(
            f"Transaction {signature} not confirmed after {self._confirm_timeout:.0f}s",
            signature=signature,
        )
