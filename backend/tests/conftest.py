"""Shared fakes for the MintGuard test-suite"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
from solders.keypair import Keypair

from mintguard.errors import AllEndpointsUnreachableError
from mintguard.models.monitoring import SignatureStatus
from mintguard.models.token import AuthorityType, MintAccountInfo
from mintguard.services.store import MonitoringStore

FAKE_RPC_URL = "https://rpc.example.com/v2/secret-key"


def new_address() -> str:
    return str(Keypair().pubkey())


def new_signature() -> str:
    return str(Keypair().sign_message(b"mintguard"))


class FakeSelector:
    """Hands out a dummy client; set ``fail`` to simulate every endpoint being down"""

    def __init__(self) -> None:
        self.fail = False
        self.connections = 0

    @asynccontextmanager
    async def connect(self):
        if self.fail:
            raise AllEndpointsUnreachableError([FAKE_RPC_URL], "connection refused")
        self.connections += 1
        yield object(), FAKE_RPC_URL

    def snapshot(self) -> List[Dict[str, Any]]:
        return []


class FakeGateway:
    """
    In-memory stand-in for SolanaGateway.

    Records every call in ``calls``; ``fail`` maps a method name to the
    exception it raises and ``fail_revocations`` does the same per authority.
    """

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.fail: Dict[str, Exception] = {}
        self.fail_revocations: Dict[AuthorityType, Exception] = {}
        self.mint_address = new_address()
        self.token_account = new_address()
        self.mint_authority: Optional[str] = new_address()
        self.freeze_authority: Optional[str] = new_address()
        self.decimals = 9
        self.supply = 0
        self.mint_exists = False
        self.ignore_revocations = False
        self.transient_failures = False
        self.statuses: Dict[str, List[Optional[SignatureStatus]]] = {}
        self.default_confirmation: Optional[str] = "confirmed"
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.rebroadcasts: List[str] = []

    def factory(self, client: Any, payer: Any = None, store: Any = None) -> "FakeGateway":
        return self

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    async def create_mint(self, decimals: int):
        self._enter("create_mint")
        self.mint_exists = True
        self.decimals = decimals
        return self.mint_address, new_signature()

    async def get_or_create_associated_account(self, mint_address: str, owner: str):
        self._enter("get_or_create_associated_account")
        return self.token_account, new_signature()

    async def mint_to(self, mint_address: str, token_account: str, amount: int) -> str:
        self._enter("mint_to")
        self.supply += amount
        return new_signature()

    async def revoke_authority(self, mint_address: str, authority: AuthorityType) -> str:
        self.calls.append(f"revoke_{authority.value}")
        exc = self.fail_revocations.get(authority)
        if exc is not None:
            if self.transient_failures:
                del self.fail_revocations[authority]
            raise exc
        if not self.ignore_revocations:
            if authority == AuthorityType.MINT:
                self.mint_authority = None
            else:
                self.freeze_authority = None
        return new_signature()

    async def get_mint_info(self, mint_address: str) -> Optional[MintAccountInfo]:
        self._enter("get_mint_info")
        if not self.mint_exists:
            return None
        return MintAccountInfo(
            mint_address=mint_address,
            decimals=self.decimals,
            supply=self.supply,
            mint_authority=self.mint_authority,
            freeze_authority=self.freeze_authority,
            is_initialized=True,
        )

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        self._enter("get_signature_status")
        script = self.statuses.get(signature)
        if script:
            # the last scripted status repeats
            return script.pop(0) if len(script) > 1 else script[0]
        if self.default_confirmation is None:
            return None
        return SignatureStatus(signature=signature, confirmation_status=self.default_confirmation, slot=1)

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        self._enter("get_transaction")
        return self.transactions.get(signature)

    async def rebroadcast(self, signature: str) -> str:
        self._enter("rebroadcast")
        self.rebroadcasts.append(signature)
        return new_signature()


class RecordingDispatcher:
    """Collects dispatched events instead of delivering them"""

    def __init__(self) -> None:
        self.events: List[tuple] = []

    def dispatch(self, event: str, payload: Dict[str, Any]) -> int:
        self.events.append((event, payload))
        return 0

    def payloads(self, event: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


class RecordingSleep:
    """Replaces asyncio.sleep; remembers requested delays in seconds"""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def store():
    return MonitoringStore(retention_seconds=3600)


@pytest.fixture
def fake_selector():
    return FakeSelector()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def payer():
    return Keypair()


@pytest.fixture
def address_factory():
    return new_address


@pytest.fixture
def signature_factory():
    return new_signature
