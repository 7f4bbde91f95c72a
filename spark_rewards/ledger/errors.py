"""Error taxonomy shared by the ledger service and the distributor.

Every error carries an HTTP status and a retry kind. Transient errors are
retried by callers; definitive ones are reported and never retried.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    DEFINITIVE = "definitive"


class LedgerError(Exception):
    """Base class for errors surfaced to ledger API callers."""

    status: int = 500
    code: str = "internal_error"
    kind: ErrorKind = ErrorKind.DEFINITIVE

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "detail": str(self)}


class ValidationError(LedgerError):
    """Malformed or mismatched input. Raised before any state change."""

    status = 400
    code = "invalid_request"


class InvalidScore(ValidationError):
    code = "invalid_score"


class AuthorizationError(LedgerError):
    """Signature does not resolve to an allowed signer."""

    status = 403
    code = "invalid_signature"


class InvalidSignature(AuthorizationError):
    """Signature encoding could not be recovered to an address."""


class NegativeBalanceError(LedgerError):
    """A payout would drive a balance below zero. The batch is rolled back."""

    status = 400
    code = "negative_balance"

    def __init__(self, address: str, balance: int | None = None):
        self.address = address
        self.balance = balance
        super().__init__(f"Scheduled rewards for {address} would become negative")

    def to_dict(self) -> dict[str, str]:
        data = super().to_dict()
        data["address"] = self.address
        return data


class TransientIOError(LedgerError):
    """Store or network hiccup. Safe to retry."""

    status = 503
    code = "unavailable"
    kind = ErrorKind.TRANSIENT


__all__ = [
    "AuthorizationError",
    "ErrorKind",
    "InvalidScore",
    "InvalidSignature",
    "LedgerError",
    "NegativeBalanceError",
    "TransientIOError",
    "ValidationError",
]
