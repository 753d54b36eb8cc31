"""Domain exceptions with stable error codes for API and background handlers"""

from typing import Any, List, Optional


class MintGuardError(Exception):
    """Base class for every error the service reports to callers."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class AllEndpointsUnreachableError(MintGuardError):
    """Every candidate RPC endpoint, including the override, failed liveness."""

    code = "RPC_UNAVAILABLE"
    status_code = 503

    def __init__(self, tried: List[str], last_error: Optional[str] = None) -> None:
        message = f"All RPC endpoints unreachable (tried {len(tried)})"
        if last_error:
            message = f"{message}. Last error: {last_error}"
        super().__init__(message)
        self.tried = list(tried)
        self.last_error = last_error


class TransactionFailedError(MintGuardError):
    """The chain rejected a submitted transaction."""

    code = "TRANSACTION_FAILED"
    status_code = 502

    def __init__(self, message: str, signature: Optional[str] = None, chain_error: Any = None) -> None:
        super().__init__(message)
        self.signature = signature
        self.chain_error = chain_error


class TransactionTimeoutError(TransactionFailedError):
    """A submitted transaction did not confirm within the configured window."""

    code = "TRANSACTION_TIMEOUT"
    status_code = 504
    # set when the unconfirmed transaction creates a mint that may still land
    mint_address: Optional[str] = None


class SupplyIssuanceError(MintGuardError):
    """Mint account exists but the initial supply could not be issued."""

    code = "SUPPLY_ISSUANCE_FAILED"
    status_code = 502

    def __init__(self, mint_address: str, reason: str) -> None:
        super().__init__(f"Mint created but supply issuance failed: {reason}")
        self.mint_address = mint_address
        self.reason = reason


class AuthorityRevocationError(MintGuardError):
    """Revoking a single authority failed; earlier steps stay committed."""

    code = "AUTHORITY_REVOCATION_FAILED"
    status_code = 502

    def __init__(self, authority: str, reason: str) -> None:
        super().__init__(f"Failed to revoke {authority} authority: {reason}")
        self.authority = authority
        self.reason = reason


class SigningWalletUnavailableError(MintGuardError):
    code = "SIGNER_UNAVAILABLE"
    status_code = 503


class InvalidWebhookUrlError(MintGuardError, ValueError):
    code = "INVALID_WEBHOOK_URL"
    status_code = 400


class TransactionNotFoundError(MintGuardError):
    code = "TRANSACTION_NOT_FOUND"
    status_code = 404

    def __init__(self, signature: str) -> None:
        super().__init__(f"Transaction {signature} not found on any endpoint")
        self.signature = signature


class RecordNotFoundError(MintGuardError):
    code = "NOT_FOUND"
    status_code = 404


class ResubmissionUnavailableError(MintGuardError):
    """A retry attempt has no signed payload or step it can resubmit."""

    code = "RESUBMISSION_UNAVAILABLE"
    status_code = 409
