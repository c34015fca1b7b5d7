"""Custom exception hierarchy for the CreditKid onboarding service."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence, Tuple


class ErrorKind(str, Enum):
    """Closed set of failure kinds every onboarding error resolves to."""

    VALIDATION = "validation"
    LEDGER_REJECTED = "ledger_rejected"
    INCOMPLETE_PROFILE = "incomplete_profile"
    CAPABILITY_NOT_ENABLED = "capability_not_enabled"
    RESOURCE_MISSING = "resource_missing"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    RATE_LIMITED = "rate_limited"
    SIGNATURE_INVALID = "signature_invalid"
    STEP_OUT_OF_ORDER = "step_out_of_order"
    UNKNOWN = "unknown"


class CreditKidError(Exception):
    """Base class for all CreditKid specific errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, field: Optional[str] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.code = code or self.kind.value


class ValidationError(CreditKidError):
    """Raised when input fails a local check before any ledger call."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field: str, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message, field=field, code=code)


class LedgerRejected(CreditKidError):
    """Raised when the ledger refuses a request it considers invalid."""

    kind = ErrorKind.LEDGER_REJECTED


class IncompleteProfile(CreditKidError):
    """Raised when a cardholder cannot be built from the stored profile."""

    kind = ErrorKind.INCOMPLETE_PROFILE

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing: Tuple[str, ...] = tuple(missing)
        super().__init__("Missing required fields: " + ", ".join(self.missing))


class CapabilityNotEnabled(CreditKidError):
    """Raised when the platform itself is not configured for a capability."""

    kind = ErrorKind.CAPABILITY_NOT_ENABLED


class ResourceMissing(CreditKidError):
    """Raised when a referenced ledger object no longer exists."""

    kind = ErrorKind.RESOURCE_MISSING


class InsufficientFunds(CreditKidError):
    """Raised when a balance blocks a top-up, payout or card issuance."""

    kind = ErrorKind.INSUFFICIENT_FUNDS


class TopUpDeclined(InsufficientFunds):
    """Raised when the ledger accepted a top-up request but declined the transfer."""


class RateLimited(CreditKidError):
    kind = ErrorKind.RATE_LIMITED


class SignatureInvalid(CreditKidError):
    """Raised when a webhook body does not match its signature."""

    kind = ErrorKind.SIGNATURE_INVALID


class StepOutOfOrder(CreditKidError):
    """Raised when an onboarding step runs before its prerequisites."""

    kind = ErrorKind.STEP_OUT_OF_ORDER


class UnknownLedgerError(CreditKidError):
    """Raised for network failures, timeouts and unclassified ledger errors."""

    kind = ErrorKind.UNKNOWN


__all__ = [
    "CapabilityNotEnabled",
    "CreditKidError",
    "ErrorKind",
    "IncompleteProfile",
    "InsufficientFunds",
    "LedgerRejected",
    "RateLimited",
    "ResourceMissing",
    "SignatureInvalid",
    "StepOutOfOrder",
    "TopUpDeclined",
    "UnknownLedgerError",
    "ValidationError",
]
