"""Error taxonomy shared by the settlement protocol and the auction engine."""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for every rejection raised by a ledger component."""

    default_code = "MarketplaceError"

    def __init__(self, code: str | None = None, message: str | None = None) -> None:
        self.code = code or self.default_code
        self.message = message or self.code
        super().__init__(f"{self.code}: {self.message}" if message else self.code)


class ValidationError(MarketplaceError):
    """Bad price, expiry, caller, duration or missing collection."""

    default_code = "ValidationError"


class AuthorizationError(MarketplaceError):
    """Bad signature, missing approval or unauthorized governance caller."""

    default_code = "AuthorizationError"


class StateConflictError(MarketplaceError):
    """Nonce already used, intent cancelled, auction already finished."""

    default_code = "StateConflictError"


class ReentrancyError(StateConflictError):
    default_code = "Reentrancy"


class TransferFailureError(MarketplaceError):
    """An outbound payment or asset move failed; the whole call is discarded."""

    default_code = "TransferFailed"


class PaymentFailed(TransferFailureError):
    default_code = "PaymentFailed"
