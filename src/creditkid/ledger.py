"""External ledger client backed by Stripe Connect and Stripe Issuing.

Each method issues exactly one Stripe call (``create_card`` adds a lookup
when Stripe reports a duplicate or an earlier attempt failed) and returns a
normalised model from :mod:`creditkid.models`. Stripe exceptions are
classified here, once, into :mod:`creditkid.exceptions`; nothing is retried.
An idempotency key whose failure Stripe has stored is replaced by a
``-retry-N`` key so a manual retry reaches Stripe again.
"""

from __future__ import annotations

import hashlib
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple

import stripe

from .exceptions import (
    CapabilityNotEnabled,
    CreditKidError,
    InsufficientFunds,
    LedgerRejected,
    RateLimited,
    ResourceMissing,
    UnknownLedgerError,
)
from .models import (
    AccountDetails,
    AccountLink,
    BalanceAmount,
    BalanceTransaction,
    BankAccount,
    Capability,
    CardAlreadyExists,
    CardCreated,
    CardDetails,
    CardIssueResult,
    Cardholder,
    ConnectBalance,
    FundingBalance,
    LedgerAccount,
    Page,
    Payout,
    PersonalProfile,
    TopUp,
    parse_capabilities,
)

MAX_SPENDING_LIMIT_CENTS = 50000
ONBOARDING_CAPABILITIES: Tuple[Capability, ...] = (Capability.TRANSFERS, Capability.CARD_PAYMENTS)

# Test-mode phone numbers Stripe verifies automatically.
TEST_ACCOUNT_PHONE = "0000000000"
TEST_CARDHOLDER_PHONE = "+15555555555"
PLACEHOLDER_PHONES = frozenset({"0000000000", "10000000000"})

# Ledger parameter fragments mapped to the form input the user should fix.
PARAM_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("postal_code", "zipCode"),
    ("[line1]", "address"),
    ("[line2]", "address2"),
    ("[city]", "city"),
    ("[state]", "state"),
    ("dob", "dob"),
    ("ssn_last_4", "ssnLast4"),
    ("first_name", "firstName"),
    ("last_name", "lastName"),
    ("email", "email"),
    ("phone", "phone"),
    ("routing_number", "routingNumber"),
    ("account_number", "accountNumber"),
    ("account_holder_name", "accountHolderName"),
    ("amount", "amount"),
)

CAPABILITY_ERROR_CODES = frozenset({"capability_not_enabled", "platform_account_required", "account_invalid"})
INSUFFICIENT_FUNDS_CODES = frozenset({"insufficient_funds", "balance_insufficient"})
DUPLICATE_REQUEST_CODES = frozenset({"idempotency_key_in_use", "idempotency_error"})


def field_for_param(param: Optional[str]) -> Optional[str]:
    """Return the form field responsible for a rejected ledger parameter."""

    if not param:
        return None
    for fragment, field_name in PARAM_FIELDS:
        if fragment in param:
            return field_name
    return None


def classify_stripe_error(exc: stripe.StripeError) -> CreditKidError:
    """Translate a Stripe exception into the closed onboarding error taxonomy."""

    code = getattr(exc, "code", None)
    param = getattr(exc, "param", None)
    message = getattr(exc, "user_message", None) or str(exc)

    if isinstance(exc, stripe.RateLimitError):
        return RateLimited("The bank service is busy. Please try again in a moment.", code=code)
    if isinstance(exc, stripe.APIConnectionError):
        return UnknownLedgerError("We couldn't reach the bank service. Please try again.", code=code)
    if isinstance(exc, stripe.AuthenticationError):
        return CapabilityNotEnabled(
            "Banking is misconfigured on the server. Please contact support.", code="authentication_failed"
        )
    if code in INSUFFICIENT_FUNDS_CODES:
        return InsufficientFunds(message, code=code)
    if isinstance(exc, stripe.CardError):
        return LedgerRejected(message, field=field_for_param(param), code=code)
    if isinstance(exc, stripe.InvalidRequestError):
        if code == "resource_missing":
            return ResourceMissing("That banking record no longer exists. Please start over.", code=code)
        if code in CAPABILITY_ERROR_CODES:
            return CapabilityNotEnabled(
                "Card issuing is not enabled for this platform. Complete Issuing onboarding in the dashboard.",
                code=code,
            )
        if code == "postal_code_invalid" or (param and "postal_code" in param):
            return LedgerRejected(
                "The ZIP code doesn't match a valid US address. Please check that your ZIP code matches your state.",
                field="zipCode",
                code="postal_code_invalid",
            )
        return LedgerRejected(message, field=field_for_param(param), code=code)
    return UnknownLedgerError(message, code=code)


def configure_stripe(timeout_seconds: Optional[float] = None) -> None:
    """Apply process-wide SDK settings. Call once at startup, before serving."""

    if timeout_seconds is not None:
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
    stripe.max_network_retries = 0


@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except stripe.StripeError as exc:
        raise classify_stripe_error(exc) from exc


def account_idempotency_key(user_id: str, profile: PersonalProfile) -> str:
    """Stable key for one user submitting one exact profile."""

    parts = (
        user_id,
        profile.first_name,
        profile.last_name,
        profile.email,
        profile.phone,
        f"{profile.dob.year}-{profile.dob.month}-{profile.dob.day}",
        profile.address.line1,
        profile.address.line2,
        profile.address.city,
        profile.address.state,
        profile.address.postal_code,
        profile.ssn_last4,
    )
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"create-account-{user_id}-{digest[:32]}"


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _mapping(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None)
    return dict(to_dict()) if callable(to_dict) else {}


def account_from_ledger(obj: Any) -> LedgerAccount:
    """Normalise a Stripe account object (or webhook payload) into :class:`LedgerAccount`."""

    requirements = _field(obj, "requirements")
    return LedgerAccount(
        id=str(_field(obj, "id", "")),
        capabilities=parse_capabilities(_mapping(_field(obj, "capabilities"))),
        currently_due=tuple(_field(requirements, "currently_due", ())),
        eventually_due=tuple(_field(requirements, "eventually_due", ())),
        past_due=tuple(_field(requirements, "past_due", ())),
        pending_verification=tuple(_field(requirements, "pending_verification", ())),
        disabled_reason=_field(requirements, "disabled_reason"),
        charges_enabled=bool(_field(obj, "charges_enabled", False)),
        payouts_enabled=bool(_field(obj, "payouts_enabled", False)),
        details_submitted=bool(_field(obj, "details_submitted", False)),
    )


def _bank_account(obj: Any) -> BankAccount:
    return BankAccount(
        id=str(_field(obj, "id", "")),
        bank_name=str(_field(obj, "bank_name", "")),
        last4=str(_field(obj, "last4", "")),
        routing_number=str(_field(obj, "routing_number", "")),
        status=str(_field(obj, "status", "")),
        default_for_currency=bool(_field(obj, "default_for_currency", False)),
    )


def account_details_from_ledger(obj: Any) -> AccountDetails:
    individual = _field(obj, "individual")
    external = _field(_field(obj, "external_accounts"), "data", [])
    return AccountDetails(
        account=account_from_ledger(obj),
        bank_accounts=tuple(_bank_account(entry) for entry in external if _field(entry, "object") == "bank_account"),
        verification_status=str(_field(_field(individual, "verification"), "status", "unverified")),
        tos_accepted=bool(_field(_field(obj, "tos_acceptance"), "date")),
    )


def _individual_params(profile: PersonalProfile, *, phone: str) -> Dict[str, Any]:
    individual: Dict[str, Any] = {
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "email": profile.email,
        "phone": phone,
        "dob": profile.dob.as_dict(),
        "address": {
            "line1": profile.address.line1,
            "city": profile.address.city,
            "state": profile.address.state,
            "postal_code": profile.address.postal_code,
            "country": profile.address.country,
        },
    }
    if profile.address.line2:
        individual["address"]["line2"] = profile.address.line2
    if profile.ssn_last4:
        individual["ssn_last_4"] = profile.ssn_last4
    return individual


def _amounts(entries: Optional[Sequence[Any]]) -> Tuple[BalanceAmount, ...]:
    return tuple(
        BalanceAmount(amount_cents=int(_field(entry, "amount", 0)), currency=str(_field(entry, "currency", "usd")))
        for entry in entries or ()
    )


def _payout(obj: Any) -> Payout:
    return Payout(
        id=str(_field(obj, "id", "")),
        amount_cents=int(_field(obj, "amount", 0)),
        currency=str(_field(obj, "currency", "usd")),
        status=str(_field(obj, "status", "")),
        arrival_date=_field(obj, "arrival_date"),
        created=_field(obj, "created"),
        method=_field(obj, "method"),
        description=_field(obj, "description"),
        failure_message=_field(obj, "failure_message"),
    )


def _balance_transaction(obj: Any) -> BalanceTransaction:
    return BalanceTransaction(
        id=str(_field(obj, "id", "")),
        amount_cents=int(_field(obj, "amount", 0)),
        currency=str(_field(obj, "currency", "usd")),
        type=str(_field(obj, "type", "")),
        status=str(_field(obj, "status", "")),
        description=_field(obj, "description"),
        created=int(_field(obj, "created", 0)),
        available_on=_field(obj, "available_on"),
        fee_cents=int(_field(obj, "fee", 0)),
        net_cents=int(_field(obj, "net", 0)),
    )


def _result_is_stored(exc: stripe.StripeError) -> bool:
    """True when Stripe has saved this failure against the idempotency key."""

    return isinstance(exc, stripe.APIError) or getattr(exc, "code", None) == "idempotency_error"


def _is_replayed(obj: Any) -> bool:
    response = getattr(obj, "last_response", None)
    headers = getattr(response, "headers", None) or {}
    return str(headers.get("idempotent-replayed", headers.get("Idempotent-Replayed", ""))).lower() == "true"


class ExternalLedgerClient(ABC):
    """Abstract client for the external ledger.

    Implementations issue one remote call per method, never retry, and
    raise only :class:`~creditkid.exceptions.CreditKidError` subclasses.
    """

    @abstractmethod
    def create_account(
        self, user_id: str, profile: PersonalProfile, *, business_url: str, tos_ip: str = "0.0.0.0"
    ) -> LedgerAccount:
        """Create a connected account requesting the onboarding capabilities."""

    @abstractmethod
    def create_account_link(self, account_id: str, *, return_url: str, refresh_url: str) -> AccountLink:
        """Create a hosted onboarding link for outstanding requirements."""

    @abstractmethod
    def request_capabilities(self, account_id: str, capabilities: Sequence[Capability]) -> LedgerAccount:
        ...

    @abstractmethod
    def retrieve_account(self, account_id: str) -> LedgerAccount:
        ...

    @abstractmethod
    def retrieve_account_details(self, account_id: str) -> AccountDetails:
        ...

    @abstractmethod
    def update_account(
        self, account_id: str, profile: PersonalProfile, *, id_number: Optional[str] = None
    ) -> LedgerAccount:
        """Resubmit the individual's details, optionally with the full SSN."""

    @abstractmethod
    def accept_terms(self, account_id: str, *, ip: str, accepted_at: int) -> LedgerAccount:
        ...

    @abstractmethod
    def add_bank_account(
        self, account_id: str, *, routing_number: str, account_number: str, holder_name: str
    ) -> BankAccount:
        ...

    @abstractmethod
    def create_cardholder(self, account_id: str, profile: PersonalProfile) -> Cardholder:
        ...

    @abstractmethod
    def create_card(
        self, account_id: str, cardholder_id: str, *, spending_limit_cents: int = MAX_SPENDING_LIMIT_CENTS
    ) -> CardIssueResult:
        """Issue a virtual card, reporting an existing card as :class:`CardAlreadyExists`."""

    @abstractmethod
    def retrieve_card(self, account_id: str, card_id: str, *, reveal: bool = False) -> CardDetails:
        ...

    @abstractmethod
    def get_funding_balance(self, account_id: str) -> FundingBalance:
        ...

    @abstractmethod
    def get_connect_balance(self, account_id: str) -> ConnectBalance:
        ...

    @abstractmethod
    def top_up(self, account_id: str, amount_cents: int, *, currency: str = "usd") -> TopUp:
        ...

    @abstractmethod
    def create_payout(self, account_id: str, amount_cents: int, *, currency: str = "usd") -> Payout:
        ...

    @abstractmethod
    def list_payouts(self, account_id: str, *, limit: int = 10, starting_after: Optional[str] = None) -> Page[Payout]:
        ...

    @abstractmethod
    def list_balance_transactions(
        self, account_id: str, *, limit: int = 10, starting_after: Optional[str] = None
    ) -> Page[BalanceTransaction]:
        ...


class StripeLedgerClient(ExternalLedgerClient):
    """:class:`ExternalLedgerClient` speaking to Stripe with a per-client API key."""

    statement_descriptor = "CREDITKID"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key
        # Idempotency keys whose stored result is a failure, with the retry count.
        self._spent_keys: Dict[str, int] = {}

    @property
    def test_mode(self) -> bool:
        return self._api_key.startswith("sk_test_")

    def _idempotency_key(self, base: str) -> str:
        retries = self._spent_keys.get(base, 0)
        return f"{base}-retry-{retries}" if retries else base

    def _spend_key(self, base: str) -> None:
        self._spent_keys[base] = self._spent_keys.get(base, 0) + 1

    def _account_phone(self, profile: PersonalProfile) -> str:
        return TEST_ACCOUNT_PHONE if self.test_mode else profile.phone

    def _cardholder_phone(self, phone: str) -> str:
        digits = "".join(char for char in phone if char.isdigit())
        if self.test_mode and (not digits or digits in PLACEHOLDER_PHONES):
            return TEST_CARDHOLDER_PHONE
        return phone

    # ------------------------------------------------------------------
    # Connect accounts
    # ------------------------------------------------------------------
    def create_account(
        self, user_id: str, profile: PersonalProfile, *, business_url: str, tos_ip: str = "0.0.0.0"
    ) -> LedgerAccount:
        base_key = account_idempotency_key(user_id, profile)
        try:
            account = stripe.Account.create(
                api_key=self._api_key,
                idempotency_key=self._idempotency_key(base_key),
                type="custom",
                country=profile.address.country,
                business_type="individual",
                capabilities={capability.value: {"requested": True} for capability in ONBOARDING_CAPABILITIES},
                business_profile={
                    "mcc": "7399",
                    "url": business_url,
                    "product_description": "Personal event fundraising and family allowance management.",
                },
                individual=_individual_params(profile, phone=self._account_phone(profile)),
                tos_acceptance={"service_agreement": "full", "date": int(time.time()), "ip": tos_ip},
                settings={
                    "payouts": {"statement_descriptor": self.statement_descriptor},
                    "payments": {"statement_descriptor": f"{self.statement_descriptor} GIFT"},
                },
                metadata={"user_id": user_id},
            )
        except stripe.StripeError as exc:
            if _result_is_stored(exc):
                self._spend_key(base_key)
            raise classify_stripe_error(exc) from exc
        return account_from_ledger(account)

    def retrieve_account_details(self, account_id: str) -> AccountDetails:
        with translate_errors():
            account = stripe.Account.retrieve(account_id, api_key=self._api_key)
        return account_details_from_ledger(account)

    def update_account(
        self, account_id: str, profile: PersonalProfile, *, id_number: Optional[str] = None
    ) -> LedgerAccount:
        individual = _individual_params(profile, phone=self._account_phone(profile))
        if id_number:
            individual["id_number"] = id_number
        with translate_errors():
            account = stripe.Account.modify(account_id, api_key=self._api_key, individual=individual)
        return account_from_ledger(account)

    def accept_terms(self, account_id: str, *, ip: str, accepted_at: int) -> LedgerAccount:
        with translate_errors():
            account = stripe.Account.modify(
                account_id,
                api_key=self._api_key,
                tos_acceptance={"service_agreement": "full", "date": int(accepted_at), "ip": ip},
            )
        return account_from_ledger(account)

    def create_account_link(self, account_id: str, *, return_url: str, refresh_url: str) -> AccountLink:
        with translate_errors():
            link = stripe.AccountLink.create(
                api_key=self._api_key,
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
                collection_options={"fields": "eventually_due"},
            )
        return AccountLink(url=str(_field(link, "url", "")), expires_at=_field(link, "expires_at"))

    def request_capabilities(self, account_id: str, capabilities: Sequence[Capability]) -> LedgerAccount:
        with translate_errors():
            account = stripe.Account.modify(
                account_id,
                api_key=self._api_key,
                capabilities={capability.value: {"requested": True} for capability in capabilities},
            )
        return account_from_ledger(account)

    def retrieve_account(self, account_id: str) -> LedgerAccount:
        with translate_errors():
            account = stripe.Account.retrieve(account_id, api_key=self._api_key)
        return account_from_ledger(account)

    def add_bank_account(
        self, account_id: str, *, routing_number: str, account_number: str, holder_name: str
    ) -> BankAccount:
        with translate_errors():
            bank = stripe.Account.create_external_account(
                account_id,
                api_key=self._api_key,
                external_account={
                    "object": "bank_account",
                    "country": "US",
                    "currency": "usd",
                    "account_holder_name": holder_name,
                    "routing_number": routing_number,
                    "account_number": account_number,
                },
            )
        return _bank_account(bank)

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------
    def create_cardholder(self, account_id: str, profile: PersonalProfile) -> Cardholder:
        address: Dict[str, Any] = {
            "line1": profile.address.line1,
            "city": profile.address.city,
            "state": profile.address.state,
            "postal_code": profile.address.postal_code,
            "country": profile.address.country,
        }
        if profile.address.line2:
            address["line2"] = profile.address.line2
        params: Dict[str, Any] = {
            "type": "individual",
            "name": profile.full_name,
            "email": profile.email,
            "billing": {"address": address},
            "individual": {
                "first_name": profile.first_name,
                "last_name": profile.last_name or profile.first_name,
                "dob": profile.dob.as_dict(),
            },
        }
        phone = self._cardholder_phone(profile.phone)
        if phone:
            params["phone_number"] = phone
        with translate_errors():
            cardholder = stripe.issuing.Cardholder.create(
                api_key=self._api_key, stripe_account=account_id, **params
            )
        return Cardholder(id=str(_field(cardholder, "id", "")), status=str(_field(cardholder, "status", "active")))

    def create_card(
        self, account_id: str, cardholder_id: str, *, spending_limit_cents: int = MAX_SPENDING_LIMIT_CENTS
    ) -> CardIssueResult:
        limit = min(int(spending_limit_cents), MAX_SPENDING_LIMIT_CENTS)
        base_key = f"issue-card-{cardholder_id}"
        if base_key in self._spent_keys:
            # A failed attempt may still have produced a card.
            existing = self._existing_card_id(account_id, cardholder_id)
            if existing is not None:
                return CardAlreadyExists(card_id=existing)
        try:
            card = stripe.issuing.Card.create(
                api_key=self._api_key,
                stripe_account=account_id,
                idempotency_key=self._idempotency_key(base_key),
                cardholder=cardholder_id,
                type="virtual",
                currency="usd",
                status="active",
                spending_controls={"spending_limits": [{"amount": limit, "interval": "per_authorization"}]},
            )
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) not in DUPLICATE_REQUEST_CODES:
                raise classify_stripe_error(exc) from exc
            existing = self._existing_card_id(account_id, cardholder_id)
            if existing is None:
                if _result_is_stored(exc):
                    self._spend_key(base_key)
                raise classify_stripe_error(exc) from exc
            return CardAlreadyExists(card_id=existing)
        except stripe.StripeError as exc:
            if _result_is_stored(exc):
                self._spend_key(base_key)
            raise classify_stripe_error(exc) from exc
        card_id = str(_field(card, "id", ""))
        if _is_replayed(card):
            return CardAlreadyExists(card_id=card_id)
        return CardCreated(card_id=card_id, last4=str(_field(card, "last4", "")), status=str(_field(card, "status", "")))

    def _existing_card_id(self, account_id: str, cardholder_id: str) -> Optional[str]:
        with translate_errors():
            cards = stripe.issuing.Card.list(
                api_key=self._api_key, stripe_account=account_id, cardholder=cardholder_id, limit=1
            )
        data = _field(cards, "data", [])
        return str(_field(data[0], "id")) if data else None

    def retrieve_card(self, account_id: str, card_id: str, *, reveal: bool = False) -> CardDetails:
        expand = ["number", "cvc"] if reveal else []
        with translate_errors():
            card = stripe.issuing.Card.retrieve(
                card_id, api_key=self._api_key, stripe_account=account_id, expand=expand
            )
        return CardDetails(
            card_id=str(_field(card, "id", card_id)),
            last4=str(_field(card, "last4", "")),
            exp_month=int(_field(card, "exp_month", 0)),
            exp_year=int(_field(card, "exp_year", 0)),
            brand=str(_field(card, "brand", "")),
            number=_field(card, "number") if reveal else None,
            cvc=_field(card, "cvc") if reveal else None,
        )

    # ------------------------------------------------------------------
    # Balances and money movement
    # ------------------------------------------------------------------
    def get_funding_balance(self, account_id: str) -> FundingBalance:
        with translate_errors():
            balance = stripe.Balance.retrieve(api_key=self._api_key, stripe_account=account_id)
        available = _field(_field(balance, "issuing"), "available", [])
        if not available:
            return FundingBalance(available_cents=0, currency="usd")
        first = available[0]
        return FundingBalance(
            available_cents=int(_field(first, "amount", 0)), currency=str(_field(first, "currency", "usd"))
        )

    def get_connect_balance(self, account_id: str) -> ConnectBalance:
        with translate_errors():
            balance = stripe.Balance.retrieve(api_key=self._api_key, stripe_account=account_id)
        return ConnectBalance(
            available=_amounts(_field(balance, "available", [])),
            pending=_amounts(_field(balance, "pending", [])),
        )

    def top_up(self, account_id: str, amount_cents: int, *, currency: str = "usd") -> TopUp:
        with translate_errors():
            topup = stripe.Topup.create(
                api_key=self._api_key,
                stripe_account=account_id,
                amount=int(amount_cents),
                currency=currency,
                description="CreditKid Issuing balance top-up",
                destination_balance="issuing",
            )
        return TopUp(
            id=str(_field(topup, "id", "")),
            amount_cents=int(_field(topup, "amount", amount_cents)),
            status=str(_field(topup, "status", "")),
        )

    def create_payout(self, account_id: str, amount_cents: int, *, currency: str = "usd") -> Payout:
        with translate_errors():
            payout = stripe.Payout.create(
                api_key=self._api_key, stripe_account=account_id, amount=int(amount_cents), currency=currency
            )
        return _payout(payout)

    def list_payouts(self, account_id: str, *, limit: int = 10, starting_after: Optional[str] = None) -> Page[Payout]:
        params: Dict[str, Any] = {"limit": limit}
        if starting_after:
            params["starting_after"] = starting_after
        with translate_errors():
            result = stripe.Payout.list(api_key=self._api_key, stripe_account=account_id, **params)
        return Page(
            items=tuple(_payout(item) for item in _field(result, "data", [])),
            has_more=bool(_field(result, "has_more", False)),
        )

    def list_balance_transactions(
        self, account_id: str, *, limit: int = 10, starting_after: Optional[str] = None
    ) -> Page[BalanceTransaction]:
        params: Dict[str, Any] = {"limit": limit}
        if starting_after:
            params["starting_after"] = starting_after
        with translate_errors():
            result = stripe.BalanceTransaction.list(api_key=self._api_key, stripe_account=account_id, **params)
        return Page(
            items=tuple(_balance_transaction(item) for item in _field(result, "data", [])),
            has_more=bool(_field(result, "has_more", False)),
        )


__all__ = [
    "ExternalLedgerClient",
    "MAX_SPENDING_LIMIT_CENTS",
    "ONBOARDING_CAPABILITIES",
    "StripeLedgerClient",
    "TEST_ACCOUNT_PHONE",
    "TEST_CARDHOLDER_PHONE",
    "account_details_from_ledger",
    "account_from_ledger",
    "account_idempotency_key",
    "classify_stripe_error",
    "configure_stripe",
    "field_for_param",
    "translate_errors",
]
