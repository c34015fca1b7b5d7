"""Onboarding orchestrator driving a user from no account to an issued card.

The orchestrator owns the step-wise state machine
``NO_ACCOUNT -> PENDING -> (APPROVED | REJECTED)``; an approved account then
progresses through cardholder creation and card issuance. Every step calls
the ledger first and writes the mirror only after the call succeeds.
"""

from __future__ import annotations

import re
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple, TypeVar, Union
from uuid import uuid4

from .config import MINIMUM_TOPUP_CENTS, PUBLIC_BASE_URL, STRIPE_REFRESH_PATH, STRIPE_RETURN_PATH, join_url
from .exceptions import (
    CreditKidError,
    IncompleteProfile,
    InsufficientFunds,
    StepOutOfOrder,
    TopUpDeclined,
    ValidationError,
)
from .ledger import MAX_SPENDING_LIMIT_CENTS, ExternalLedgerClient
from .models import (
    AccountDetails,
    AccountLink,
    AccountMirror,
    BalanceTransaction,
    BankAccount,
    Capability,
    CardAlreadyExists,
    CardDetails,
    ConnectBalance,
    FundingBalance,
    KycStatus,
    LedgerAccount,
    Page,
    PaymentRecord,
    Payout,
    PersonalProfile,
    TopUp,
)
from .money import CentsLike, format_cents, require_positive, to_cents
from .ops import StructuredLogger
from .persistence import AccountMirrorStore
from .validation import (
    apply_profile_updates,
    profile_from_payload,
    validate_account_number,
    validate_email,
    validate_routing_number,
)

R = TypeVar("R")

ALL_CAPABILITIES: Tuple[Capability, ...] = (Capability.TRANSFERS, Capability.CARD_PAYMENTS, Capability.CARD_ISSUING)
MAX_PAGE_SIZE = 100


def profile_slug(full_name: str, user_id: str) -> str:
    """Public profile slug, e.g. ``ava-lee-3f9c2a1b``."""

    name = re.sub(r"\s+", "-", (full_name or "member").strip().lower())
    name = re.sub(r"[^a-z0-9-]", "", name)
    name = re.sub(r"-+", "-", name).strip("-") or "member"
    return f"{name}-{user_id[:8]}"


class OnboardingOrchestrator:
    """Step-wise onboarding operations for one user session."""

    __slots__ = (
        "handle_id",
        "_user_id",
        "_ledger",
        "_store",
        "_logger",
        "_public_base_url",
        "_return_path",
        "_refresh_path",
        "_clock",
        "_closed",
    )

    def __init__(
        self,
        user_id: str,
        *,
        ledger: ExternalLedgerClient,
        store: AccountMirrorStore,
        logger: Optional[StructuredLogger] = None,
        public_base_url: str = PUBLIC_BASE_URL,
        return_path: str = STRIPE_RETURN_PATH,
        refresh_path: str = STRIPE_REFRESH_PATH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self.handle_id = str(uuid4())
        self._user_id = user_id
        self._ledger = ledger
        self._store = store
        self._logger = logger or StructuredLogger()
        self._public_base_url = public_base_url
        self._return_path = return_path
        self._refresh_path = refresh_path
        self._clock = clock
        self._closed = False

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_open(self) -> None:
        if self._closed:
            raise StepOutOfOrder("This onboarding session has ended. Please sign in again.")

    def _call(self, step: str, operation: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Run one ledger call, logging classified failures before re-raising them unchanged."""

        try:
            return operation(*args, **kwargs)
        except CreditKidError as exc:
            self._logger.log(
                "ledger_error", user=self._user_id, step=step, kind=exc.kind.value, code=exc.code, field=exc.field
            )
            raise

    def _require_account(self) -> AccountMirror:
        self._check_open()
        mirror = self._store.get(self._user_id)
        if mirror.external_account_id is None:
            raise StepOutOfOrder("Set up your bank account first.")
        return mirror

    def _apply_status(self, account: LedgerAccount) -> AccountMirror:
        mirror = self._store.write_status(
            self._user_id,
            capabilities=account.capabilities,
            currently_due=account.currently_due,
            disabled_reason=account.disabled_reason,
            version=int(self._clock()),
        )
        assert mirror is not None
        return mirror

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------
    def get_account_status(self) -> AccountMirror:
        self._check_open()
        return self._store.get(self._user_id)

    def create_account(self, profile: Union[PersonalProfile, Mapping[str, Any]], *, tos_ip: str = "0.0.0.0") -> str:
        """Create the external account and move the mirror to ``pending``.

        Returns the external account id. A mirror that already holds an id
        returns it without calling the ledger.
        """

        self._check_open()
        mirror = self._store.ensure(self._user_id)
        if mirror.external_account_id is not None:
            self._logger.log("account_exists", user=self._user_id, account=mirror.external_account_id)
            return mirror.external_account_id
        if not isinstance(profile, PersonalProfile):
            profile = profile_from_payload(profile)
        business_url = join_url(self._public_base_url, f"users/{profile_slug(profile.full_name, self._user_id)}")
        account = self._call(
            "create_account",
            self._ledger.create_account,
            self._user_id,
            profile,
            business_url=business_url,
            tos_ip=tos_ip,
        )
        self._store.set_external_account(self._user_id, account.id, profile)
        self._apply_status(account)
        self._logger.log("account_created", user=self._user_id, account=account.id)
        return account.id

    def link_bank_account(self, routing_number: str, account_number: str, holder_name: str) -> BankAccount:
        mirror = self._require_account()
        routing = validate_routing_number(routing_number)
        account = validate_account_number(account_number)
        holder = (holder_name or "").strip()
        if not holder:
            raise ValidationError("accountHolderName", "Please enter the account holder's name.")
        bank = self._call(
            "link_bank_account",
            self._ledger.add_bank_account,
            mirror.external_account_id,
            routing_number=routing,
            account_number=account,
            holder_name=holder,
        )
        self._logger.log("bank_account_linked", user=self._user_id, bank=bank.id, last4=bank.last4)
        return bank

    def request_capabilities(self) -> AccountMirror:
        mirror = self._require_account()
        account = self._call(
            "request_capabilities", self._ledger.request_capabilities, mirror.external_account_id, ALL_CAPABILITIES
        )
        updated = self._apply_status(account)
        self._logger.log("capabilities_requested", user=self._user_id, kyc=updated.kyc_status.value)
        return updated

    def poll_status(self) -> AccountMirror:
        """Pull the account from the ledger and overwrite the status group."""

        mirror = self._require_account()
        account = self._call("poll_status", self._ledger.retrieve_account, mirror.external_account_id)
        updated = self._apply_status(account)
        self._logger.log(
            "status_polled",
            user=self._user_id,
            kyc=updated.kyc_status.value,
            currently_due=len(updated.currently_due),
        )
        return updated

    def get_account_details(self) -> AccountDetails:
        """Fetch requirements, linked banks and verification state, refreshing the status group."""

        mirror = self._require_account()
        details = self._call("get_account_details", self._ledger.retrieve_account_details, mirror.external_account_id)
        self._apply_status(details.account)
        return details

    def update_account_info(self, payload: Mapping[str, Any]) -> LedgerAccount:
        """Submit corrected or missing personal details and return the new requirements."""

        mirror = self._require_account()
        if mirror.profile is None:
            raise StepOutOfOrder("Complete your personal info before updating it.")
        profile, id_number = apply_profile_updates(mirror.profile, payload)
        account = self._call(
            "update_account_info",
            self._ledger.update_account,
            mirror.external_account_id,
            profile,
            id_number=id_number,
        )
        self._store.set_external_account(self._user_id, mirror.external_account_id, profile)
        updated = self._apply_status(account)
        self._logger.log(
            "account_updated",
            user=self._user_id,
            kyc=updated.kyc_status.value,
            currently_due=len(account.currently_due),
        )
        return account

    def accept_terms_of_service(self, *, ip: str = "0.0.0.0") -> LedgerAccount:
        mirror = self._require_account()
        account = self._call(
            "accept_terms_of_service",
            self._ledger.accept_terms,
            mirror.external_account_id,
            ip=ip or "0.0.0.0",
            accepted_at=int(self._clock()),
        )
        self._apply_status(account)
        self._logger.log("terms_accepted", user=self._user_id, account=mirror.external_account_id)
        return account

    def create_onboarding_link(self) -> AccountLink:
        mirror = self._require_account()
        return self._call(
            "create_onboarding_link",
            self._ledger.create_account_link,
            mirror.external_account_id,
            return_url=join_url(self._public_base_url, self._return_path),
            refresh_url=join_url(self._public_base_url, self._refresh_path),
        )

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------
    def create_cardholder(self, account_details: Optional[Mapping[str, Any]] = None) -> str:
        """Create the issuing cardholder from the profile captured at account creation.

        ``account_details`` may override ``email`` and ``phone``. Every missing
        field is reported at once, before any ledger call.
        """

        mirror = self._require_account()
        if mirror.cardholder_id is not None:
            return mirror.cardholder_id
        if mirror.kyc_status is not KycStatus.APPROVED:
            raise StepOutOfOrder("Identity verification must be approved before a card can be set up.")

        details = dict(account_details or {})
        profile = mirror.profile
        if profile is None:
            raise IncompleteProfile(["firstName", "lastName", "email", "address"])
        missing = []
        email = (details.get("email") or profile.email or "").strip()
        phone = (details.get("phone") or profile.phone or "").strip()
        if not profile.first_name.strip():
            missing.append("firstName")
        if not email:
            missing.append("email")
        else:
            try:
                email = validate_email(email)
            except ValidationError:
                missing.append("email")
        missing.extend(profile.address.missing_fields())
        if missing:
            raise IncompleteProfile(missing)

        cardholder_profile = PersonalProfile(
            first_name=profile.first_name,
            last_name=profile.last_name,
            email=email,
            phone=phone,
            dob=profile.dob,
            address=profile.address,
        )
        cardholder = self._call(
            "create_cardholder", self._ledger.create_cardholder, mirror.external_account_id, cardholder_profile
        )
        self._store.set_cardholder(self._user_id, cardholder.id)
        self._logger.log("cardholder_created", user=self._user_id, cardholder=cardholder.id)
        return cardholder.id

    def get_funding_balance(self) -> FundingBalance:
        mirror = self._require_account()
        return self._call("get_funding_balance", self._ledger.get_funding_balance, mirror.external_account_id)

    def ensure_funds_for_card(self, minimum_cents: CentsLike) -> Optional[TopUp]:
        """Top up the shortfall once when the funding balance is below ``minimum_cents``.

        Returns the top-up, or ``None`` when the balance already suffices.
        """

        minimum = require_positive(to_cents(minimum_cents, field="minimumCents"), allow_zero=True, field="minimumCents")
        mirror = self._require_account()
        balance = self._call("ensure_funds_for_card", self._ledger.get_funding_balance, mirror.external_account_id)
        if balance.available_cents >= minimum:
            return None
        shortfall = minimum - balance.available_cents
        topup = self._call(
            "ensure_funds_for_card", self._ledger.top_up, mirror.external_account_id, shortfall, currency=balance.currency
        )
        self._logger.log("topup_created", user=self._user_id, topup=topup.id, amount=shortfall, status=topup.status)
        if topup.declined:
            raise TopUpDeclined(
                "Your bank declined the transfer. Check your linked account balance and try again.",
                code="topup_declined",
            )
        return topup

    def top_up(self, amount_cents: CentsLike) -> TopUp:
        amount = to_cents(amount_cents)
        if amount < MINIMUM_TOPUP_CENTS:
            raise ValidationError("amount", "Amount required (minimum 100 cents = $1).")
        mirror = self._require_account()
        topup = self._call("top_up", self._ledger.top_up, mirror.external_account_id, amount)
        self._logger.log("topup_created", user=self._user_id, topup=topup.id, amount=amount, status=topup.status)
        if topup.declined:
            raise TopUpDeclined(
                "Your bank declined the transfer. Check your linked account balance and try again.",
                code="topup_declined",
            )
        return topup

    def issue_card(self, *, spending_limit_cents: CentsLike = MAX_SPENDING_LIMIT_CENTS) -> str:
        """Issue the virtual card, treating an existing card as success."""

        limit = require_positive(to_cents(spending_limit_cents, field="spendingLimitCents"), field="spendingLimitCents")
        if limit > MAX_SPENDING_LIMIT_CENTS:
            raise ValidationError(
                "spendingLimitCents", f"Spending limit cannot exceed {format_cents(MAX_SPENDING_LIMIT_CENTS)}."
            )
        mirror = self._require_account()
        if mirror.cardholder_id is None:
            raise StepOutOfOrder("Create the cardholder before issuing a card.")
        if mirror.virtual_card_id is not None:
            return mirror.virtual_card_id
        balance = self._call("issue_card", self._ledger.get_funding_balance, mirror.external_account_id)
        if balance.available_cents <= 0:
            raise InsufficientFunds("Insufficient issuing balance. Add funds before creating a card.")
        result = self._call(
            "issue_card",
            self._ledger.create_card,
            mirror.external_account_id,
            mirror.cardholder_id,
            spending_limit_cents=limit,
        )
        self._store.set_virtual_card(self._user_id, result.card_id)
        if isinstance(result, CardAlreadyExists):
            self._logger.log("card_already_exists", user=self._user_id, card=result.card_id)
        else:
            self._logger.log("card_issued", user=self._user_id, card=result.card_id, last4=result.last4)
        return result.card_id

    def get_card_details(self, *, reveal: bool = False) -> CardDetails:
        mirror = self._require_account()
        if mirror.virtual_card_id is None:
            raise StepOutOfOrder("No card found. Create a virtual card first.")
        return self._call(
            "get_card_details",
            self._ledger.retrieve_card,
            mirror.external_account_id,
            mirror.virtual_card_id,
            reveal=reveal,
        )

    # ------------------------------------------------------------------
    # Balances, transactions and payouts
    # ------------------------------------------------------------------
    def get_connect_balance(self) -> ConnectBalance:
        mirror = self._require_account()
        return self._call("get_connect_balance", self._ledger.get_connect_balance, mirror.external_account_id)

    def list_transactions(self, *, limit: int = 10, starting_after: Optional[str] = None) -> Page[BalanceTransaction]:
        mirror = self._require_account()
        return self._call(
            "list_transactions",
            self._ledger.list_balance_transactions,
            mirror.external_account_id,
            limit=max(1, min(int(limit), MAX_PAGE_SIZE)),
            starting_after=starting_after or None,
        )

    def list_payouts(self, *, limit: int = 10, starting_after: Optional[str] = None) -> Page[Payout]:
        mirror = self._require_account()
        return self._call(
            "list_payouts",
            self._ledger.list_payouts,
            mirror.external_account_id,
            limit=max(1, min(int(limit), MAX_PAGE_SIZE)),
            starting_after=starting_after or None,
        )

    def list_payments(self) -> Tuple[PaymentRecord, ...]:
        """Succeeded payments recorded by the webhook reconciler for this account."""

        mirror = self._require_account()
        return self._store.payments(mirror.external_account_id)

    def create_payout(self, amount_cents: CentsLike, *, currency: str = "usd") -> Payout:
        amount = require_positive(to_cents(amount_cents))
        mirror = self._require_account()
        payout = self._call(
            "create_payout", self._ledger.create_payout, mirror.external_account_id, amount, currency=currency
        )
        self._logger.log("payout_created", user=self._user_id, payout=payout.id, amount=amount)
        return payout


class OnboardingSessions:
    """Open and close orchestrator handles bound to an authenticated user."""

    def __init__(
        self,
        *,
        ledger: ExternalLedgerClient,
        store: AccountMirrorStore,
        logger: Optional[StructuredLogger] = None,
        public_base_url: str = PUBLIC_BASE_URL,
        return_path: str = STRIPE_RETURN_PATH,
        refresh_path: str = STRIPE_REFRESH_PATH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._logger = logger or StructuredLogger()
        self._public_base_url = public_base_url
        self._return_path = return_path
        self._refresh_path = refresh_path
        self._clock = clock
        self._handles: Dict[str, OnboardingOrchestrator] = {}

    @property
    def store(self) -> AccountMirrorStore:
        return self._store

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    def open(self, user_id: str) -> OnboardingOrchestrator:
        handle = OnboardingOrchestrator(
            user_id,
            ledger=self._ledger,
            store=self._store,
            logger=self._logger,
            public_base_url=self._public_base_url,
            return_path=self._return_path,
            refresh_path=self._refresh_path,
            clock=self._clock,
        )
        self._handles[handle.handle_id] = handle
        return handle

    def close(self, handle: OnboardingOrchestrator) -> None:
        handle.close()
        self._handles.pop(handle.handle_id, None)

    def active(self, user_id: Optional[str] = None) -> Tuple[OnboardingOrchestrator, ...]:
        handles = self._handles.values()
        if user_id is not None:
            return tuple(handle for handle in handles if handle.user_id == user_id)
        return tuple(handles)

    @contextmanager
    def session(self, user_id: str) -> Iterator[OnboardingOrchestrator]:
        handle = self.open(user_id)
        try:
            yield handle
        finally:
            self.close(handle)


__all__ = ["ALL_CAPABILITIES", "OnboardingOrchestrator", "OnboardingSessions", "profile_slug"]
