from types import SimpleNamespace

import pytest
import stripe

from creditkid.exceptions import (
    CapabilityNotEnabled,
    InsufficientFunds,
    LedgerRejected,
    RateLimited,
    ResourceMissing,
    UnknownLedgerError,
)
from creditkid.ledger import (
    TEST_ACCOUNT_PHONE,
    TEST_CARDHOLDER_PHONE,
    StripeLedgerClient,
    account_details_from_ledger,
    account_from_ledger,
    account_idempotency_key,
    classify_stripe_error,
    configure_stripe,
    field_for_param,
)
from creditkid.models import CapabilityStatus, CardAlreadyExists, CardCreated

from conftest import make_profile


class Recorder:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture()
def client() -> StripeLedgerClient:
    return StripeLedgerClient("sk_test_123")


def test_postal_code_rejection_maps_to_zip_field() -> None:
    exc = stripe.InvalidRequestError(
        "Invalid postal code", "individual[address][postal_code]", code="postal_code_invalid"
    )
    error = classify_stripe_error(exc)
    assert isinstance(error, LedgerRejected)
    assert error.field == "zipCode"
    assert error.code == "postal_code_invalid"


def test_invalid_param_maps_to_form_field() -> None:
    error = classify_stripe_error(stripe.InvalidRequestError("Bad routing", "external_account[routing_number]"))
    assert isinstance(error, LedgerRejected)
    assert error.field == "routingNumber"
    assert field_for_param("individual[address][city]") == "city"
    assert field_for_param(None) is None


@pytest.mark.parametrize(
    "exc, expected",
    [
        (stripe.InvalidRequestError("gone", None, code="resource_missing"), ResourceMissing),
        (stripe.InvalidRequestError("no issuing", None, code="capability_not_enabled"), CapabilityNotEnabled),
        (stripe.RateLimitError("slow down"), RateLimited),
        (stripe.APIConnectionError("timed out"), UnknownLedgerError),
        (stripe.AuthenticationError("bad key"), CapabilityNotEnabled),
        (stripe.CardError("no money", None, "insufficient_funds"), InsufficientFunds),
        (stripe.APIError("boom"), UnknownLedgerError),
    ],
)
def test_stripe_errors_are_classified(exc, expected) -> None:
    assert isinstance(classify_stripe_error(exc), expected)


def test_account_from_webhook_payload() -> None:
    account = account_from_ledger(
        {
            "id": "acct_1",
            "capabilities": {"transfers": "active", "card_issuing": "unrequested", "legacy_payments": "active"},
            "requirements": {"currently_due": ["external_account"], "disabled_reason": None},
            "charges_enabled": True,
        }
    )
    assert account.capabilities == {
        "transfers": CapabilityStatus.ACTIVE,
        "card_issuing": CapabilityStatus.INACTIVE,
    }
    assert account.currently_due == ("external_account",)
    assert account.charges_enabled is True


def test_idempotency_key_tracks_profile() -> None:
    first = account_idempotency_key("user-1", make_profile())
    assert first == account_idempotency_key("user-1", make_profile())
    assert first != account_idempotency_key("user-1", make_profile(phone="+15555550000"))
    assert first.startswith("create-account-user-1-")


def test_create_account_sends_metadata_and_key(client, monkeypatch) -> None:
    recorder = Recorder(
        result={
            "id": "acct_1",
            "capabilities": {"transfers": "pending", "card_payments": "pending"},
            "requirements": {"currently_due": ["individual.id_number"]},
        }
    )
    monkeypatch.setattr(stripe.Account, "create", recorder)

    account = client.create_account(
        "user-1", make_profile(), business_url="https://creditkid.test/users/ava", tos_ip="203.0.113.9"
    )

    assert account.id == "acct_1"
    assert account.currently_due == ("individual.id_number",)
    _, kwargs = recorder.calls[0]
    assert kwargs["api_key"] == "sk_test_123"
    assert kwargs["metadata"] == {"user_id": "user-1"}
    assert kwargs["capabilities"] == {"transfers": {"requested": True}, "card_payments": {"requested": True}}
    assert kwargs["individual"]["ssn_last_4"] == "6789"
    assert kwargs["tos_acceptance"]["ip"] == "203.0.113.9"
    assert kwargs["idempotency_key"] == account_idempotency_key("user-1", make_profile())


def test_create_account_translates_errors(client, monkeypatch) -> None:
    error = stripe.InvalidRequestError("bad zip", "individual[address][postal_code]")
    monkeypatch.setattr(stripe.Account, "create", Recorder(error=error))

    with pytest.raises(LedgerRejected) as excinfo:
        client.create_account("user-1", make_profile(), business_url="https://creditkid.test")

    assert excinfo.value.field == "zipCode"
    assert excinfo.value.__cause__ is error


def test_create_card_reports_new_card(client, monkeypatch) -> None:
    card = SimpleNamespace(id="ic_1", last4="4242", status="active", last_response=SimpleNamespace(headers={}))
    recorder = Recorder(result=card)
    monkeypatch.setattr(stripe.issuing.Card, "create", recorder)

    result = client.create_card("acct_1", "ich_1", spending_limit_cents=90000)

    assert result == CardCreated(card_id="ic_1", last4="4242", status="active")
    _, kwargs = recorder.calls[0]
    assert kwargs["idempotency_key"] == "issue-card-ich_1"
    assert kwargs["stripe_account"] == "acct_1"
    assert kwargs["spending_controls"]["spending_limits"][0]["amount"] == 50000


def test_create_card_replay_is_existing_card(client, monkeypatch) -> None:
    card = SimpleNamespace(id="ic_1", last_response=SimpleNamespace(headers={"idempotent-replayed": "true"}))
    monkeypatch.setattr(stripe.issuing.Card, "create", Recorder(result=card))

    assert client.create_card("acct_1", "ich_1") == CardAlreadyExists(card_id="ic_1")


def test_create_card_concurrent_duplicate_looks_up_card(client, monkeypatch) -> None:
    error = stripe.InvalidRequestError(
        "Keys for idempotent requests can only be used once", None, code="idempotency_key_in_use"
    )
    monkeypatch.setattr(stripe.issuing.Card, "create", Recorder(error=error))
    lookup = Recorder(result={"data": [{"id": "ic_existing"}]})
    monkeypatch.setattr(stripe.issuing.Card, "list", lookup)

    assert client.create_card("acct_1", "ich_1") == CardAlreadyExists(card_id="ic_existing")
    _, kwargs = lookup.calls[0]
    assert kwargs["cardholder"] == "ich_1"


def test_funding_balance_reads_issuing_balance(client, monkeypatch) -> None:
    monkeypatch.setattr(
        stripe.Balance,
        "retrieve",
        Recorder(result={"issuing": {"available": [{"amount": 1250, "currency": "usd"}]}, "available": []}),
    )
    balance = client.get_funding_balance("acct_1")
    assert balance.available_cents == 1250
    assert balance.formatted == "$12.50"

    monkeypatch.setattr(stripe.Balance, "retrieve", Recorder(result={"available": []}))
    assert client.get_funding_balance("acct_1").available_cents == 0


def test_top_up_targets_issuing_balance(client, monkeypatch) -> None:
    recorder = Recorder(result={"id": "tu_1", "amount": 500, "status": "pending"})
    monkeypatch.setattr(stripe.Topup, "create", recorder)

    topup = client.top_up("acct_1", 500)

    assert topup.id == "tu_1"
    assert topup.declined is False
    _, kwargs = recorder.calls[0]
    assert kwargs["destination_balance"] == "issuing"
    assert kwargs["amount"] == 500


def test_list_payouts_pages(client, monkeypatch) -> None:
    recorder = Recorder(
        result={
            "data": [{"id": "po_1", "amount": 700, "currency": "usd", "status": "paid", "arrival_date": 1_700_000_000}],
            "has_more": True,
        }
    )
    monkeypatch.setattr(stripe.Payout, "list", recorder)

    page = client.list_payouts("acct_1", limit=5, starting_after="po_0")

    assert page.has_more is True
    assert page.items[0].amount_cents == 700
    _, kwargs = recorder.calls[0]
    assert kwargs["starting_after"] == "po_0"
    assert kwargs["limit"] == 5


def test_failed_card_attempt_retries_under_a_new_key(client, monkeypatch) -> None:
    create = Recorder(error=stripe.APIError("server error"))
    monkeypatch.setattr(stripe.issuing.Card, "create", create)
    lookup = Recorder(result={"data": []})
    monkeypatch.setattr(stripe.issuing.Card, "list", lookup)

    with pytest.raises(UnknownLedgerError):
        client.create_card("acct_1", "ich_1")
    assert lookup.calls == []

    create.error = None
    create.result = SimpleNamespace(id="ic_2", last4="4242", status="active", last_response=None)
    result = client.create_card("acct_1", "ich_1")

    assert result == CardCreated(card_id="ic_2", last4="4242", status="active")
    assert len(lookup.calls) == 1
    assert [kwargs["idempotency_key"] for _, kwargs in create.calls] == ["issue-card-ich_1", "issue-card-ich_1-retry-1"]


def test_failed_card_attempt_that_produced_a_card_is_not_recreated(client, monkeypatch) -> None:
    create = Recorder(error=stripe.APIError("server error"))
    monkeypatch.setattr(stripe.issuing.Card, "create", create)
    monkeypatch.setattr(stripe.issuing.Card, "list", Recorder(result={"data": [{"id": "ic_made"}]}))

    with pytest.raises(UnknownLedgerError):
        client.create_card("acct_1", "ich_1")

    assert client.create_card("acct_1", "ich_1") == CardAlreadyExists(card_id="ic_made")
    assert len(create.calls) == 1


def test_stored_idempotency_error_spends_the_card_key(client, monkeypatch) -> None:
    error = stripe.InvalidRequestError("Key reused with different parameters", None, code="idempotency_error")
    create = Recorder(error=error)
    monkeypatch.setattr(stripe.issuing.Card, "create", create)
    monkeypatch.setattr(stripe.issuing.Card, "list", Recorder(result={"data": []}))

    with pytest.raises(LedgerRejected):
        client.create_card("acct_1", "ich_1")
    with pytest.raises(LedgerRejected):
        client.create_card("acct_1", "ich_1")

    assert create.calls[1][1]["idempotency_key"] == "issue-card-ich_1-retry-1"


def test_create_account_retry_after_server_error_uses_new_key(client, monkeypatch) -> None:
    recorder = Recorder(error=stripe.APIError("server error"))
    monkeypatch.setattr(stripe.Account, "create", recorder)
    base = account_idempotency_key("user-1", make_profile())

    for _ in range(2):
        with pytest.raises(UnknownLedgerError):
            client.create_account("user-1", make_profile(), business_url="https://creditkid.test")

    assert [kwargs["idempotency_key"] for _, kwargs in recorder.calls] == [base, f"{base}-retry-1"]


def test_rejected_account_keeps_its_key(client, monkeypatch) -> None:
    recorder = Recorder(error=stripe.InvalidRequestError("bad zip", "individual[address][postal_code]"))
    monkeypatch.setattr(stripe.Account, "create", recorder)

    for _ in range(2):
        with pytest.raises(LedgerRejected):
            client.create_account("user-1", make_profile(), business_url="https://creditkid.test")

    assert recorder.calls[0][1]["idempotency_key"] == recorder.calls[1][1]["idempotency_key"]


def test_test_mode_sends_verified_phone_numbers(client, monkeypatch) -> None:
    account = Recorder(result={"id": "acct_1"})
    cardholder = Recorder(result={"id": "ich_1", "status": "active"})
    monkeypatch.setattr(stripe.Account, "create", account)
    monkeypatch.setattr(stripe.issuing.Cardholder, "create", cardholder)

    client.create_account("user-1", make_profile(), business_url="https://creditkid.test")
    client.create_cardholder("acct_1", make_profile(phone="+10000000000"))
    client.create_cardholder("acct_1", make_profile())

    assert account.calls[0][1]["individual"]["phone"] == TEST_ACCOUNT_PHONE
    assert cardholder.calls[0][1]["phone_number"] == TEST_CARDHOLDER_PHONE
    assert cardholder.calls[1][1]["phone_number"] == "+15555550123"


def test_live_mode_sends_profile_phone(monkeypatch) -> None:
    live = StripeLedgerClient("sk_live_123")
    account = Recorder(result={"id": "acct_1"})
    cardholder = Recorder(result={"id": "ich_1"})
    monkeypatch.setattr(stripe.Account, "create", account)
    monkeypatch.setattr(stripe.issuing.Cardholder, "create", cardholder)

    live.create_account("user-1", make_profile(), business_url="https://creditkid.test")
    live.create_cardholder("acct_1", make_profile(phone="+10000000000"))

    assert live.test_mode is False
    assert account.calls[0][1]["individual"]["phone"] == "+15555550123"
    assert cardholder.calls[0][1]["phone_number"] == "+10000000000"


def test_client_construction_leaves_sdk_settings_alone(monkeypatch) -> None:
    sentinel = object()
    monkeypatch.setattr(stripe, "default_http_client", sentinel)
    monkeypatch.setattr(stripe, "max_network_retries", 3)

    StripeLedgerClient("sk_test_123")

    assert stripe.default_http_client is sentinel
    assert stripe.max_network_retries == 3

    configure_stripe(None)

    assert stripe.default_http_client is sentinel
    assert stripe.max_network_retries == 0


def test_update_account_sends_full_ssn(client, monkeypatch) -> None:
    recorder = Recorder(result={"id": "acct_1", "requirements": {"currently_due": []}})
    monkeypatch.setattr(stripe.Account, "modify", recorder)

    account = client.update_account("acct_1", make_profile(), id_number="123456789")

    assert account.currently_due == ()
    args, kwargs = recorder.calls[0]
    assert args == ("acct_1",)
    assert kwargs["individual"]["id_number"] == "123456789"
    assert kwargs["individual"]["ssn_last_4"] == "6789"


def test_accept_terms_records_date_and_ip(client, monkeypatch) -> None:
    recorder = Recorder(result={"id": "acct_1"})
    monkeypatch.setattr(stripe.Account, "modify", recorder)

    client.accept_terms("acct_1", ip="203.0.113.9", accepted_at=1_700_000_000)

    _, kwargs = recorder.calls[0]
    assert kwargs["tos_acceptance"] == {"service_agreement": "full", "date": 1_700_000_000, "ip": "203.0.113.9"}


def test_account_details_from_ledger() -> None:
    details = account_details_from_ledger(
        {
            "id": "acct_1",
            "requirements": {"currently_due": [], "past_due": ["individual.id_number"]},
            "individual": {"verification": {"status": "verified"}},
            "tos_acceptance": {"date": 1_700_000_000, "ip": "203.0.113.9"},
            "external_accounts": {
                "data": [
                    {
                        "object": "bank_account",
                        "id": "ba_1",
                        "bank_name": "STRIPE TEST BANK",
                        "last4": "6789",
                        "routing_number": "110000000",
                        "status": "verified",
                        "default_for_currency": True,
                    },
                    {"object": "card", "id": "card_1", "last4": "4242"},
                ]
            },
        }
    )

    assert details.account.past_due == ("individual.id_number",)
    assert details.verification_status == "verified"
    assert details.tos_accepted is True
    assert [bank.id for bank in details.bank_accounts] == ["ba_1"]
    assert details.bank_accounts[0].default_for_currency is True


def test_account_details_default_to_unverified() -> None:
    details = account_details_from_ledger({"id": "acct_1"})

    assert details.verification_status == "unverified"
    assert details.tos_accepted is False
    assert details.bank_accounts == ()
