"""JSON helpers for the CreditKid HTTP surface."""

from __future__ import annotations

from typing import Dict, Sequence

from .exceptions import CreditKidError, IncompleteProfile
from .models import (
    AccountDetails,
    AccountLink,
    AccountMirror,
    BalanceAmount,
    BalanceTransaction,
    BankAccount,
    CardDetails,
    ConnectBalance,
    FundingBalance,
    LedgerAccount,
    Page,
    PaymentRecord,
    Payout,
    TopUp,
)


class ApiExporter:
    """Convert onboarding data structures to JSON friendly dictionaries."""

    def account_snapshot(self, mirror: AccountMirror) -> Dict[str, object]:
        return {
            "userId": mirror.user_id,
            "externalAccountId": mirror.external_account_id,
            "cardholderId": mirror.cardholder_id,
            "virtualCardId": mirror.virtual_card_id,
            "capabilities": {name: status.value for name, status in sorted(mirror.capabilities.items())},
            "currentlyDue": list(mirror.currently_due),
            "disabledReason": mirror.disabled_reason,
            "kycStatus": mirror.kyc_status.value,
            "lastSyncedAt": mirror.last_synced_at.isoformat() if mirror.last_synced_at else None,
        }

    def requirements(self, account: LedgerAccount) -> Dict[str, object]:
        return {
            "accountId": account.id,
            "requirements": {
                "currentlyDue": list(account.currently_due),
                "eventuallyDue": list(account.eventually_due),
                "pastDue": list(account.past_due),
                "pendingVerification": list(account.pending_verification),
                "disabledReason": account.disabled_reason,
            },
            "chargesEnabled": account.charges_enabled,
            "payoutsEnabled": account.payouts_enabled,
            "detailsSubmitted": account.details_submitted,
        }

    def account_details(self, details: AccountDetails) -> Dict[str, object]:
        payload = self.requirements(details.account)
        payload["capabilities"] = {name: status.value for name, status in sorted(details.account.capabilities.items())}
        payload["verificationStatus"] = details.verification_status
        payload["tosAccepted"] = details.tos_accepted
        payload["bankAccounts"] = [self.bank_account(bank) for bank in details.bank_accounts]
        return payload

    def funding_balance(self, balance: FundingBalance) -> Dict[str, object]:
        return {
            "availableCents": balance.available_cents,
            "availableFormatted": balance.formatted,
            "currency": balance.currency,
            "canCreateCard": balance.available_cents > 0,
        }

    def connect_balance(self, balance: ConnectBalance) -> Dict[str, object]:
        return {
            "available": [self._amount(entry) for entry in balance.available],
            "pending": [self._amount(entry) for entry in balance.pending],
        }

    def account_link(self, link: AccountLink) -> Dict[str, object]:
        return {"url": link.url, "expiresAt": link.expires_at}

    def bank_account(self, bank: BankAccount) -> Dict[str, object]:
        return {
            "bankAccountId": bank.id,
            "bankName": bank.bank_name,
            "last4": bank.last4,
            "status": bank.status,
            "defaultForCurrency": bank.default_for_currency,
        }

    def top_up(self, topup: TopUp) -> Dict[str, object]:
        return {"topupId": topup.id, "amountCents": topup.amount_cents, "status": topup.status}

    def card_details(self, card: CardDetails) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "cardId": card.card_id,
            "last4": card.last4,
            "expMonth": card.exp_month,
            "expYear": card.exp_year,
            "brand": card.brand,
        }
        if card.number:
            payload["number"] = card.number
        if card.cvc:
            payload["cvc"] = card.cvc
        return payload

    def payments(self, records: Sequence[PaymentRecord]) -> Dict[str, object]:
        return {"payments": [self.payment(record) for record in records]}

    def payment(self, record: PaymentRecord) -> Dict[str, object]:
        return {
            "paymentId": record.payment_id,
            "amountCents": record.amount_cents,
            "currency": record.currency,
            "status": record.status,
            "recordedAt": record.recorded_at.isoformat(),
        }

    def transactions(self, page: Page[BalanceTransaction]) -> Dict[str, object]:
        return {
            "transactions": [
                {
                    "id": tx.id,
                    "amountCents": tx.amount_cents,
                    "currency": tx.currency,
                    "type": tx.type,
                    "status": tx.status,
                    "description": tx.description,
                    "created": tx.created,
                    "availableOn": tx.available_on,
                    "feeCents": tx.fee_cents,
                    "netCents": tx.net_cents,
                }
                for tx in page.items
            ],
            "hasMore": page.has_more,
        }

    def payouts(self, page: Page[Payout]) -> Dict[str, object]:
        return {"payouts": [self.payout(payout) for payout in page.items], "hasMore": page.has_more}

    def payout(self, payout: Payout) -> Dict[str, object]:
        return {
            "payoutId": payout.id,
            "amountCents": payout.amount_cents,
            "currency": payout.currency,
            "status": payout.status,
            "arrivalDate": payout.arrival_date,
            "created": payout.created,
            "method": payout.method,
            "description": payout.description,
            "failureMessage": payout.failure_message,
        }

    def error(self, exc: CreditKidError) -> Dict[str, object]:
        """One field error or one actionable message, never both missing."""

        payload: Dict[str, object] = {"error": exc.message, "code": exc.code, "kind": exc.kind.value}
        if exc.field:
            payload["param"] = exc.field
        if isinstance(exc, IncompleteProfile):
            payload["missing"] = list(exc.missing)
        return payload

    def _amount(self, entry: BalanceAmount) -> Dict[str, object]:
        return {"amountCents": entry.amount_cents, "currency": entry.currency}


__all__ = ["ApiExporter"]
