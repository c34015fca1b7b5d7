"""CreditKid package for onboarding users onto Stripe Connect and Issuing."""

from .api import ApiExporter
from .exceptions import (
    CapabilityNotEnabled,
    CreditKidError,
    ErrorKind,
    IncompleteProfile,
    InsufficientFunds,
    LedgerRejected,
    RateLimited,
    ResourceMissing,
    SignatureInvalid,
    StepOutOfOrder,
    TopUpDeclined,
    UnknownLedgerError,
    ValidationError,
)
from .ledger import ExternalLedgerClient, StripeLedgerClient
from .models import (
    AccountMirror,
    Address,
    Capability,
    CapabilityStatus,
    CardAlreadyExists,
    CardCreated,
    DateOfBirth,
    FundingBalance,
    KycStatus,
    PaymentRecord,
    PersonalProfile,
    WebhookState,
)
from .ops import HealthMonitor, StructuredLogger
from .orchestrator import OnboardingOrchestrator, OnboardingSessions
from .persistence import AccountMirrorStore
from .webhooks import WebhookReconciler

__all__ = [
    "AccountMirror",
    "AccountMirrorStore",
    "Address",
    "ApiExporter",
    "Capability",
    "CapabilityNotEnabled",
    "CapabilityStatus",
    "CardAlreadyExists",
    "CardCreated",
    "CreditKidError",
    "DateOfBirth",
    "ErrorKind",
    "ExternalLedgerClient",
    "FundingBalance",
    "HealthMonitor",
    "IncompleteProfile",
    "InsufficientFunds",
    "KycStatus",
    "LedgerRejected",
    "OnboardingOrchestrator",
    "OnboardingSessions",
    "PaymentRecord",
    "PersonalProfile",
    "RateLimited",
    "ResourceMissing",
    "SignatureInvalid",
    "StepOutOfOrder",
    "StripeLedgerClient",
    "StructuredLogger",
    "TopUpDeclined",
    "UnknownLedgerError",
    "ValidationError",
    "WebhookReconciler",
    "WebhookState",
]
