from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from sqlmodel import create_engine

from creditkid.ledger import MAX_SPENDING_LIMIT_CENTS, ExternalLedgerClient
from creditkid.models import (
    AccountDetails,
    AccountLink,
    Address,
    BalanceAmount,
    BalanceTransaction,
    BankAccount,
    Capability,
    CapabilityStatus,
    CardAlreadyExists,
    CardCreated,
    CardDetails,
    CardIssueResult,
    Cardholder,
    ConnectBalance,
    DateOfBirth,
    FundingBalance,
    LedgerAccount,
    Page,
    Payout,
    PersonalProfile,
    TopUp,
)
from creditkid.ops import StructuredLogger
from creditkid.orchestrator import OnboardingSessions
from creditkid.persistence import AccountMirrorStore, create_db_and_tables

FIXED_NOW = 1_700_000_000


def make_profile(**overrides: Any) -> PersonalProfile:
    values: Dict[str, Any] = dict(
        first_name="Ava",
        last_name="Lee",
        email="ava@example.com",
        phone="+15555550123",
        dob=DateOfBirth(day=12, month=4, year=1990),
        address=Address(line1="123 Market St", city="San Francisco", state="CA", postal_code="94103"),
        ssn_last4="6789",
    )
    values.update(overrides)
    return PersonalProfile(**values)


class FakeLedger(ExternalLedgerClient):
    """In-memory ledger that records every call for call-count assertions."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = []
        self.failures: Dict[str, Exception] = {}
        self.capabilities: Dict[str, CapabilityStatus] = {
            Capability.TRANSFERS.value: CapabilityStatus.PENDING,
            Capability.CARD_PAYMENTS.value: CapabilityStatus.PENDING,
        }
        self.currently_due: Tuple[str, ...] = ("individual.verification.document",)
        self.disabled_reason: Optional[str] = None
        self.funding_cents = 0
        self.topup_status = "succeeded"
        self.existing_card_id: Optional[str] = None
        self.tos_accepted = False
        self._counter = 0

    # helpers -----------------------------------------------------------
    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def count(self, name: str) -> int:
        return sum(1 for call, _, _ in self.calls if call == name)

    def last(self, name: str) -> Tuple[Tuple[Any, ...], Dict[str, Any]]:
        for call, args, kwargs in reversed(self.calls):
            if call == name:
                return args, kwargs
        raise AssertionError(f"{name} was never called")

    def approve(self) -> None:
        for capability in Capability:
            self.capabilities[capability.value] = CapabilityStatus.ACTIVE
        self.currently_due = ()

    def _account(self, account_id: str) -> LedgerAccount:
        return LedgerAccount(
            id=account_id,
            capabilities=dict(self.capabilities),
            currently_due=self.currently_due,
            disabled_reason=self.disabled_reason,
        )

    # ExternalLedgerClient ----------------------------------------------
    def create_account(
        self, user_id: str, profile: PersonalProfile, *, business_url: str, tos_ip: str = "0.0.0.0"
    ) -> LedgerAccount:
        self._record("create_account", user_id, profile, business_url=business_url, tos_ip=tos_ip)
        return self._account(self._next_id("acct"))

    def create_account_link(self, account_id: str, *, return_url: str, refresh_url: str) -> AccountLink:
        self._record("create_account_link", account_id, return_url=return_url, refresh_url=refresh_url)
        return AccountLink(url=f"https://connect.stripe.test/setup/{account_id}", expires_at=FIXED_NOW + 300)

    def request_capabilities(self, account_id: str, capabilities: Sequence[Capability]) -> LedgerAccount:
        self._record("request_capabilities", account_id, tuple(capabilities))
        for capability in capabilities:
            self.capabilities.setdefault(capability.value, CapabilityStatus.PENDING)
        return self._account(account_id)

    def retrieve_account(self, account_id: str) -> LedgerAccount:
        self._record("retrieve_account", account_id)
        return self._account(account_id)

    def retrieve_account_details(self, account_id: str) -> AccountDetails:
        self._record("retrieve_account_details", account_id)
        bank = BankAccount(id="ba_1", bank_name="STRIPE TEST BANK", last4="6789", status="new", default_for_currency=True)
        return AccountDetails(
            account=self._account(account_id),
            bank_accounts=(bank,),
            verification_status="pending",
            tos_accepted=self.tos_accepted,
        )

    def update_account(
        self, account_id: str, profile: PersonalProfile, *, id_number: Optional[str] = None
    ) -> LedgerAccount:
        self._record("update_account", account_id, profile, id_number=id_number)
        if id_number:
            self.currently_due = tuple(item for item in self.currently_due if item != "individual.id_number")
        return self._account(account_id)

    def accept_terms(self, account_id: str, *, ip: str, accepted_at: int) -> LedgerAccount:
        self._record("accept_terms", account_id, ip=ip, accepted_at=accepted_at)
        self.tos_accepted = True
        return self._account(account_id)

    def add_bank_account(
        self, account_id: str, *, routing_number: str, account_number: str, holder_name: str
    ) -> BankAccount:
        self._record(
            "add_bank_account",
            account_id,
            routing_number=routing_number,
            account_number=account_number,
            holder_name=holder_name,
        )
        return BankAccount(id=self._next_id("ba"), bank_name="STRIPE TEST BANK", last4=account_number[-4:])

    def create_cardholder(self, account_id: str, profile: PersonalProfile) -> Cardholder:
        self._record("create_cardholder", account_id, profile)
        return Cardholder(id=self._next_id("ich"))

    def create_card(
        self, account_id: str, cardholder_id: str, *, spending_limit_cents: int = MAX_SPENDING_LIMIT_CENTS
    ) -> CardIssueResult:
        self._record("create_card", account_id, cardholder_id, spending_limit_cents=spending_limit_cents)
        if self.existing_card_id is not None:
            return CardAlreadyExists(card_id=self.existing_card_id)
        card_id = self._next_id("ic")
        self.existing_card_id = card_id
        return CardCreated(card_id=card_id, last4="4242")

    def retrieve_card(self, account_id: str, card_id: str, *, reveal: bool = False) -> CardDetails:
        self._record("retrieve_card", account_id, card_id, reveal=reveal)
        return CardDetails(
            card_id=card_id,
            last4="4242",
            exp_month=12,
            exp_year=2030,
            brand="Visa",
            number="4000009990000000" if reveal else None,
            cvc="123" if reveal else None,
        )

    def get_funding_balance(self, account_id: str) -> FundingBalance:
        self._record("get_funding_balance", account_id)
        return FundingBalance(available_cents=self.funding_cents, currency="usd")

    def get_connect_balance(self, account_id: str) -> ConnectBalance:
        self._record("get_connect_balance", account_id)
        return ConnectBalance(available=(BalanceAmount(amount_cents=1500, currency="usd"),), pending=())

    def top_up(self, account_id: str, amount_cents: int, *, currency: str = "usd") -> TopUp:
        self._record("top_up", account_id, amount_cents, currency=currency)
        if self.topup_status == "succeeded":
            self.funding_cents += amount_cents
        return TopUp(id=self._next_id("tu"), amount_cents=amount_cents, status=self.topup_status)

    def create_payout(self, account_id: str, amount_cents: int, *, currency: str = "usd") -> Payout:
        self._record("create_payout", account_id, amount_cents, currency=currency)
        return Payout(id=self._next_id("po"), amount_cents=amount_cents, currency=currency, status="pending")

    def list_payouts(self, account_id: str, *, limit: int = 10, starting_after: Optional[str] = None) -> Page[Payout]:
        self._record("list_payouts", account_id, limit=limit, starting_after=starting_after)
        return Page(items=(Payout(id="po_old", amount_cents=700, currency="usd", status="paid"),), has_more=False)

    def list_balance_transactions(
        self, account_id: str, *, limit: int = 10, starting_after: Optional[str] = None
    ) -> Page[BalanceTransaction]:
        self._record("list_balance_transactions", account_id, limit=limit, starting_after=starting_after)
        transaction = BalanceTransaction(
            id="txn_1",
            amount_cents=2500,
            currency="usd",
            type="payment",
            status="available",
            description="Birthday gift",
            created=FIXED_NOW,
            net_cents=2398,
            fee_cents=102,
        )
        return Page(items=(transaction,), has_more=True)


@pytest.fixture()
def engine(tmp_path):
    db_engine = create_engine(
        f"sqlite:///{tmp_path / 'creditkid-test.db'}",
        connect_args={"check_same_thread": False},
    )
    create_db_and_tables(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture()
def store(engine) -> AccountMirrorStore:
    return AccountMirrorStore(engine)


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def logger() -> StructuredLogger:
    return StructuredLogger()


@pytest.fixture()
def sessions(ledger, store, logger) -> OnboardingSessions:
    return OnboardingSessions(
        ledger=ledger,
        store=store,
        logger=logger,
        public_base_url="https://creditkid.test/",
        return_path="/banking/setup/success",
        refresh_path="banking/setup/stripe-connection?refresh=true",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def profile_payload() -> Dict[str, Any]:
    return {
        "firstName": "Ava",
        "lastName": "Lee",
        "email": "ava@example.com",
        "phone": "+15555550123",
        "dob": "04/12/1990",
        "address": "123 Market St",
        "address2": "Apt 4",
        "city": "San Francisco",
        "state": "ca",
        "zipCode": "94103-1234",
        "ssnLast4": "6789",
    }
