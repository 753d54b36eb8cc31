"""Token minting data models"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator
from solders.pubkey import Pubkey

from .base import CamelModel

U64_MAX = 2**64 - 1


class AuthorityType(str, Enum):
    """SPL mint authorities that can be revoked"""

    MINT = "mint"
    FREEZE = "freeze"


class MintStage(str, Enum):
    """States of the mint sequence"""

    INIT = "init"
    MINT_CREATED = "mint_created"
    SUPPLY_ISSUED = "supply_issued"
    MINT_AUTHORITY_REVOKED = "mint_authority_revoked"
    FREEZE_AUTHORITY_REVOKED = "freeze_authority_revoked"
    VERIFIED = "verified"
    DONE = "done"
    FAILED = "failed"


class MintRequest(CamelModel):
    """A single request to create a fungible token. Never mutated after submission."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=32, description="Token name")
    symbol: str = Field(..., min_length=1, max_length=10, description="Token symbol")
    decimals: int = Field(default=9, ge=0, le=9, description="Decimal places")
    supply: int = Field(default=1_000_000_000, gt=0, description="Initial supply in whole tokens")
    creator_address: str = Field(..., description="Wallet receiving the initial supply")
    uri: Optional[str] = Field(None, description="Off-chain metadata URI")
    revoke_mint_authority: bool = Field(default=False, description="Fix supply after issuance")
    revoke_freeze_authority: bool = Field(default=False, description="Drop the ability to freeze holders")

    @field_validator("creator_address")
    @classmethod
    def _valid_pubkey(cls, value: str) -> str:
        try:
            Pubkey.from_string(value)
        except Exception:
            raise ValueError("creator address is not a valid Solana public key")
        return value

    @model_validator(mode="after")
    def _supply_fits_u64(self) -> "MintRequest":
        if self.base_units > U64_MAX:
            raise ValueError("supply * 10^decimals exceeds the u64 token amount range")
        return self

    @property
    def base_units(self) -> int:
        return self.supply * 10**self.decimals

    @property
    def revocations(self) -> List[AuthorityType]:
        wanted: List[AuthorityType] = []
        if self.revoke_mint_authority:
            wanted.append(AuthorityType.MINT)
        if self.revoke_freeze_authority:
            wanted.append(AuthorityType.FREEZE)
        return wanted


class AuthorityRevocation(CamelModel):
    """Signature of a successful authority revocation"""

    model_config = ConfigDict(frozen=True)

    type: AuthorityType = Field(..., description="Authority that was set to none")
    signature: str = Field(..., description="Revocation transaction signature")
    timestamp: datetime = Field(..., description="When the revocation confirmed")


class AuthorityVerification(CamelModel):
    """Read-back of mint authority fields after revocation"""

    model_config = ConfigDict(frozen=True)

    mint_authority_revoked: Optional[bool] = Field(None, description="None when not checked")
    freeze_authority_revoked: Optional[bool] = Field(None, description="None when not checked")
    consistent: bool = Field(..., description="Every checked authority reads back as null")


class MintFailure(CamelModel):
    """An error that stopped or degraded the mint sequence"""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    stage: MintStage = Field(..., description="Step that failed")
    authority: Optional[AuthorityType] = Field(None, description="Set for revocation failures")
    signature: Optional[str] = Field(None, description="Signature of the rejected transaction, when one was sent")


class MintResult(CamelModel):
    """Outcome of the mint sequence, including partial progress on failure."""

    model_config = ConfigDict(frozen=True)

    name: str
    symbol: str
    decimals: int
    supply: int
    mint_address: Optional[str] = Field(None, description="None when no mint was created")
    creator_token_account: Optional[str] = None
    mint_signature: Optional[str] = None
    token_account_signature: Optional[str] = Field(
        None, description="None when the associated account already existed"
    )
    supply_signature: Optional[str] = None
    authority_revocation_signatures: List[AuthorityRevocation] = Field(default_factory=list)
    verification: Optional[AuthorityVerification] = None
    stage: MintStage = Field(..., description="Terminal state: done or failed")
    completed_stages: List[MintStage] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[MintFailure] = Field(default_factory=list)

    @property
    def created(self) -> bool:
        return self.mint_address is not None

    @property
    def succeeded(self) -> bool:
        return not self.errors

    @property
    def final_signature(self) -> Optional[str]:
        """Last committed signature of the core sequence."""
        return self.supply_signature or self.mint_signature


class MintAccountInfo(CamelModel):
    """Decoded SPL mint account"""

    mint_address: str
    decimals: int
    supply: int = Field(..., description="Raw supply in base units")
    mint_authority: Optional[str] = Field(None, description="None once revoked")
    freeze_authority: Optional[str] = Field(None, description="None once revoked")
    is_initialized: bool
