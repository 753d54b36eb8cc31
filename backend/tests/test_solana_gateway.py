"""Tests for the Solana chain gateway"""

import struct
from types import SimpleNamespace

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from mintguard.errors import (
    ResubmissionUnavailableError,
    SigningWalletUnavailableError,
    TransactionFailedError,
    TransactionTimeoutError,
)
from mintguard.services.datasource.solana.gateway import MINT_LEN, SolanaGateway, parse_mint_account


def mint_bytes(mint_authority=None, supply=0, decimals=9, freeze_authority=None):
    data = struct.pack("<I", 1 if mint_authority else 0)
    data += bytes(mint_authority) if mint_authority else bytes(32)
    data += struct.pack("<QBB", supply, decimals, 1)
    data += struct.pack("<I", 1 if freeze_authority else 0)
    data += bytes(freeze_authority) if freeze_authority else bytes(32)
    return data


class FakeAsyncClient:
    """Scripted subset of solana.rpc.async_api.AsyncClient"""

    def __init__(self, statuses=None, send_error=None):
        self.statuses = list(statuses or [])
        self.send_error = send_error
        self.sent = []

    async def get_latest_blockhash(self):
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.default()))

    async def get_minimum_balance_for_rent_exemption(self, size):
        return SimpleNamespace(value=1_461_600)

    async def send_raw_transaction(self, raw, opts=None):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw)
        return SimpleNamespace(value=Transaction.from_bytes(raw).signatures[0])

    async def get_signature_statuses(self, signatures, search_transaction_history=False):
        status = self.statuses.pop(0) if len(self.statuses) > 1 else (self.statuses or [None])[0]
        return SimpleNamespace(value=[status])


def chain_status(confirmation="TransactionConfirmationStatus.Confirmed", err=None):
    return SimpleNamespace(confirmation_status=confirmation, err=err, slot=77, confirmations=None)


class TestParseMintAccount:
    """Test SPL mint layout decoding"""

    def test_revoked_authorities_are_none(self):
        info = parse_mint_account("mint", mint_bytes(supply=5_000, decimals=6))

        assert info.supply == 5_000
        assert info.decimals == 6
        assert info.is_initialized
        assert info.mint_authority is None
        assert info.freeze_authority is None

    def test_authorities_are_decoded(self):
        authority = Keypair().pubkey()
        info = parse_mint_account("mint", mint_bytes(mint_authority=authority, freeze_authority=authority))

        assert info.mint_authority == str(authority)
        assert info.freeze_authority == str(authority)

    def test_short_account_rejected(self):
        with pytest.raises(ValueError):
            parse_mint_account("mint", bytes(MINT_LEN - 1))


class TestSolanaGateway:
    """Test signing, broadcast and confirmation"""

    @pytest.mark.asyncio
    async def test_signature_status_mapping(self, signature_factory):
        gateway = SolanaGateway(FakeAsyncClient([chain_status()]))

        status = await gateway.get_signature_status(signature_factory())

        assert status.confirmation_status == "confirmed"
        assert status.is_final
        assert status.slot == 77

    @pytest.mark.asyncio
    async def test_unknown_signature_has_no_status(self, signature_factory):
        gateway = SolanaGateway(FakeAsyncClient([None]))

        assert await gateway.get_signature_status(signature_factory()) is None

    @pytest.mark.asyncio
    async def test_send_remembers_signed_bytes(self, store, payer):
        """Test that broadcast bytes are kept so the same transaction can be resent"""
        client = FakeAsyncClient([chain_status()])
        gateway = SolanaGateway(client, payer, store, confirm_poll_interval=0.001)

        signature = await gateway.mint_to(str(Keypair().pubkey()), str(Keypair().pubkey()), 1_000)

        assert store.sent_payload(signature) == client.sent[0]

        resent = await gateway.rebroadcast(signature)
        assert resent == signature
        assert client.sent[1] == client.sent[0]

    @pytest.mark.asyncio
    async def test_chain_error_raises(self, store, payer):
        client = FakeAsyncClient([chain_status(err="InstructionError")])
        gateway = SolanaGateway(client, payer, store, confirm_poll_interval=0.001)

        with pytest.raises(TransactionFailedError) as exc_info:
            await gateway.mint_to(str(Keypair().pubkey()), str(Keypair().pubkey()), 1)

        assert exc_info.value.signature is not None
        assert exc_info.value.chain_error == "InstructionError"

    @pytest.mark.asyncio
    async def test_rejected_send_raises(self, payer):
        gateway = SolanaGateway(FakeAsyncClient(send_error=RuntimeError("blockhash not found")), payer)

        with pytest.raises(TransactionFailedError) as exc_info:
            await gateway.mint_to(str(Keypair().pubkey()), str(Keypair().pubkey()), 1)

        assert "blockhash not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, payer):
        client = FakeAsyncClient([chain_status(confirmation="TransactionConfirmationStatus.Processed")])
        gateway = SolanaGateway(client, payer, confirm_timeout=0.01, confirm_poll_interval=0.001)

        with pytest.raises(TransactionTimeoutError):
            await gateway.mint_to(str(Keypair().pubkey()), str(Keypair().pubkey()), 1)

    @pytest.mark.asyncio
    async def test_rebroadcast_without_payload(self, store, signature_factory):
        gateway = SolanaGateway(FakeAsyncClient(), None, store)

        with pytest.raises(ResubmissionUnavailableError):
            await gateway.rebroadcast(signature_factory())

    @pytest.mark.asyncio
    async def test_mutation_requires_payer(self):
        gateway = SolanaGateway(FakeAsyncClient())

        with pytest.raises(SigningWalletUnavailableError):
            await gateway.mint_to(str(Pubkey.default()), str(Pubkey.default()), 1)

    @pytest.mark.asyncio
    async def test_unconfirmed_mint_carries_its_address(self, store, payer):
        """Test that a create_mint timeout names the mint account it submitted"""
        client = FakeAsyncClient([chain_status(confirmation="TransactionConfirmationStatus.Processed")])
        gateway = SolanaGateway(client, payer, store, confirm_timeout=0.01, confirm_poll_interval=0.001)

        with pytest.raises(TransactionTimeoutError) as exc_info:
            await gateway.create_mint(6)

        sent = Transaction.from_bytes(client.sent[0])
        assert exc_info.value.mint_address == str(sent.message.account_keys[1])
        assert store.sent_payload(exc_info.value.signature) == client.sent[0]
