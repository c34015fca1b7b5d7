"""Domain models used by the CreditKid onboarding service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Generic, Mapping, Optional, Tuple, TypeVar, Union

from .money import format_cents


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Capability(str, Enum):
    """Named permissions requested on a connected account."""

    TRANSFERS = "transfers"
    CARD_PAYMENTS = "card_payments"
    CARD_ISSUING = "card_issuing"


class CapabilityStatus(str, Enum):
    INACTIVE = "inactive"
    PENDING = "pending"
    ACTIVE = "active"

    @classmethod
    def parse(cls, value: object) -> "CapabilityStatus":
        """Map a raw ledger status onto the three states we track.

        Anything unrecognised (``unrequested``, ``None``) counts as inactive.
        """

        try:
            return cls(str(value))
        except ValueError:
            return cls.INACTIVE


class KycStatus(str, Enum):
    NO_ACCOUNT = "no_account"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def parse_capabilities(raw: Optional[Mapping[str, object]]) -> Dict[str, CapabilityStatus]:
    """Normalise a ledger capability mapping, keeping only the capabilities we track."""

    statuses: Dict[str, CapabilityStatus] = {}
    known = {capability.value for capability in Capability}
    for name, status in (raw or {}).items():
        if name in known:
            statuses[name] = CapabilityStatus.parse(status)
    return statuses


@dataclass(frozen=True, slots=True)
class DateOfBirth:
    day: int
    month: int
    year: int

    def as_dict(self) -> Dict[str, int]:
        return {"day": self.day, "month": self.month, "year": self.year}


@dataclass(frozen=True, slots=True)
class Address:
    """A US postal address as captured by the personal-info step."""

    line1: str
    city: str
    state: str
    postal_code: str
    line2: str = ""
    country: str = "US"

    def missing_fields(self) -> Tuple[str, ...]:
        required = (("line1", self.line1), ("city", self.city), ("state", self.state), ("postal_code", self.postal_code))
        return tuple(f"address.{name}" for name, value in required if not (value or "").strip())


@dataclass(frozen=True, slots=True)
class PersonalProfile:
    """Personal-info bundle collected before the external account exists.

    ``ssn_last4`` travels to the ledger once and is never persisted.
    """

    first_name: str
    last_name: str
    email: str
    phone: str
    dob: DateOfBirth
    address: Address
    ssn_last4: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True, slots=True)
class AccountMirror:
    """Local, eventually-consistent copy of a user's external account state."""

    user_id: str
    external_account_id: Optional[str] = None
    cardholder_id: Optional[str] = None
    virtual_card_id: Optional[str] = None
    capabilities: Mapping[str, CapabilityStatus] = field(default_factory=dict)
    currently_due: Tuple[str, ...] = ()
    disabled_reason: Optional[str] = None
    status_version: int = 0
    profile: Optional[PersonalProfile] = None
    last_synced_at: Optional[datetime] = None

    def capability(self, capability: Capability) -> CapabilityStatus:
        return self.capabilities.get(capability.value, CapabilityStatus.INACTIVE)

    @property
    def kyc_status(self) -> KycStatus:
        """Derive the KYC state from the account id, capabilities and disabled reason."""

        if self.external_account_id is None:
            return KycStatus.NO_ACCOUNT
        if self.capability(Capability.TRANSFERS) is CapabilityStatus.ACTIVE:
            return KycStatus.APPROVED
        if self.disabled_reason and self.disabled_reason.startswith("rejected"):
            return KycStatus.REJECTED
        return KycStatus.PENDING


@dataclass(frozen=True, slots=True)
class LedgerAccount:
    """Normalised view of the ledger's account object."""

    id: str
    capabilities: Mapping[str, CapabilityStatus]
    currently_due: Tuple[str, ...] = ()
    eventually_due: Tuple[str, ...] = ()
    past_due: Tuple[str, ...] = ()
    pending_verification: Tuple[str, ...] = ()
    disabled_reason: Optional[str] = None
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False


@dataclass(frozen=True, slots=True)
class AccountLink:
    url: str
    expires_at: Optional[int] = None


@dataclass(frozen=True, slots=True)
class BankAccount:
    id: str
    bank_name: str = ""
    last4: str = ""
    routing_number: str = ""
    status: str = ""
    default_for_currency: bool = False


@dataclass(frozen=True, slots=True)
class AccountDetails:
    """Full account view: requirements, linked banks and identity verification."""

    account: LedgerAccount
    bank_accounts: Tuple[BankAccount, ...] = ()
    verification_status: str = "unverified"
    tos_accepted: bool = False


@dataclass(frozen=True, slots=True)
class FundingBalance:
    """Issuing balance available to fund card spend. Never cached."""

    available_cents: int
    currency: str = "usd"

    @property
    def formatted(self) -> str:
        return format_cents(self.available_cents, self.currency)


@dataclass(frozen=True, slots=True)
class BalanceAmount:
    amount_cents: int
    currency: str


@dataclass(frozen=True, slots=True)
class ConnectBalance:
    available: Tuple[BalanceAmount, ...] = ()
    pending: Tuple[BalanceAmount, ...] = ()


@dataclass(frozen=True, slots=True)
class TopUp:
    id: str
    amount_cents: int
    status: str

    @property
    def declined(self) -> bool:
        return self.status in {"failed", "canceled", "reversed"}


@dataclass(frozen=True, slots=True)
class Cardholder:
    id: str
    status: str = "active"


@dataclass(frozen=True, slots=True)
class CardCreated:
    card_id: str
    last4: str = ""
    status: str = "active"


@dataclass(frozen=True, slots=True)
class CardAlreadyExists:
    """The cardholder already owns a card; ``card_id`` is that card."""

    card_id: str


CardIssueResult = Union[CardCreated, CardAlreadyExists]


@dataclass(frozen=True, slots=True)
class CardDetails:
    """Card display details. ``number`` and ``cvc`` are never stored."""

    card_id: str
    last4: str
    exp_month: int
    exp_year: int
    brand: str = ""
    number: Optional[str] = None
    cvc: Optional[str] = None


@dataclass(frozen=True, slots=True)
class BalanceTransaction:
    id: str
    amount_cents: int
    currency: str
    type: str
    status: str
    description: Optional[str]
    created: int
    available_on: Optional[int] = None
    fee_cents: int = 0
    net_cents: int = 0


@dataclass(frozen=True, slots=True)
class Payout:
    id: str
    amount_cents: int
    currency: str
    status: str
    arrival_date: Optional[int] = None
    created: Optional[int] = None
    method: Optional[str] = None
    description: Optional[str] = None
    failure_message: Optional[str] = None


T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: Tuple[T, ...]
    has_more: bool = False


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    """Immutable record of a succeeded payment, keyed by the ledger payment id."""

    payment_id: str
    amount_cents: int
    currency: str
    status: str
    external_account_id: Optional[str] = None
    recorded_at: datetime = field(default_factory=utcnow)


class WebhookState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class WebhookResult:
    state: WebhookState
    event_type: Optional[str] = None
    detail: str = ""


__all__ = [
    "AccountDetails",
    "AccountLink",
    "AccountMirror",
    "Address",
    "BalanceAmount",
    "BalanceTransaction",
    "BankAccount",
    "Capability",
    "CapabilityStatus",
    "CardAlreadyExists",
    "CardCreated",
    "CardDetails",
    "CardIssueResult",
    "Cardholder",
    "ConnectBalance",
    "DateOfBirth",
    "FundingBalance",
    "KycStatus",
    "LedgerAccount",
    "Page",
    "PaymentRecord",
    "Payout",
    "PersonalProfile",
    "TopUp",
    "WebhookResult",
    "WebhookState",
    "parse_capabilities",
    "utcnow",
]
