"""Inbound ledger webhooks reconciled into the account mirror."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Mapping, Optional

import stripe

from .exceptions import SignatureInvalid
from .ledger import account_from_ledger
from .models import PaymentRecord, WebhookResult, WebhookState
from .ops import HealthMonitor, StructuredLogger
from .persistence import AccountMirrorStore

EventHandler = Callable[[Mapping[str, Any]], WebhookResult]


class WebhookReconciler:
    """Verify webhook signatures and apply events to the mirror.

    Processing moves ``RECEIVED -> VERIFIED -> APPLIED`` or stops at
    ``REJECTED`` when the signature does not match. Unhandled event types
    are verified and acknowledged without touching the mirror.
    """

    def __init__(
        self,
        store: AccountMirrorStore,
        *,
        secret: str,
        tolerance_seconds: int = 300,
        logger: Optional[StructuredLogger] = None,
        health: Optional[HealthMonitor] = None,
    ) -> None:
        self._store = store
        self._secret = secret
        self._tolerance = tolerance_seconds
        self._logger = logger or StructuredLogger()
        self._health = health
        self._handlers: Dict[str, EventHandler] = {
            "account.updated": self._on_account_updated,
            "payment_intent.succeeded": self._on_payment_succeeded,
            "payment_intent.payment_failed": self._on_payment_failed,
        }

    @property
    def handled_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Return the decoded event or raise :class:`SignatureInvalid`."""

        if not self._secret:
            raise SignatureInvalid("Webhook secret is not configured.", code="secret_missing")
        if not signature:
            raise SignatureInvalid("Missing signature header.", code="signature_missing")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureInvalid("Webhook body is not valid UTF-8.", code="payload_invalid") from exc
        try:
            stripe.WebhookSignature.verify_header(body, signature, self._secret, self._tolerance)
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalid(f"Webhook Error: {exc}", code="signature_mismatch") from exc
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise SignatureInvalid("Webhook body is not valid JSON.", code="payload_invalid") from exc
        if not isinstance(event, dict):
            raise SignatureInvalid("Webhook body is not an event object.", code="payload_invalid")
        return event

    def handle(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        try:
            event = self.verify(payload, signature)
        except SignatureInvalid as exc:
            self._logger.log("webhook_rejected", state=WebhookState.REJECTED.value, code=exc.code)
            raise
        if self._health is not None:
            self._health.record_webhook()
        return self.apply(event)

    def apply(self, event: Mapping[str, Any]) -> WebhookResult:
        """Apply an already verified event."""

        event_type = str(event.get("type", ""))
        handler = self._handlers.get(event_type)
        if handler is None:
            self._logger.log("webhook_ignored", type=event_type, event_id=event.get("id"))
            return WebhookResult(state=WebhookState.VERIFIED, event_type=event_type, detail="ignored")
        return handler(event)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    @staticmethod
    def _object(event: Mapping[str, Any]) -> Mapping[str, Any]:
        data = event.get("data") or {}
        return data.get("object") or {}

    def _resolve_user(self, account_id: str, metadata: Mapping[str, Any]) -> Optional[str]:
        user_id = self._store.user_for_account(account_id)
        if user_id:
            return user_id
        # account.updated can beat the mirror write that follows account creation.
        candidate = metadata.get("user_id")
        if candidate and self._store.get(candidate).external_account_id in (None, account_id):
            return str(candidate)
        return None

    def _on_account_updated(self, event: Mapping[str, Any]) -> WebhookResult:
        payload = self._object(event)
        account = account_from_ledger(payload)
        user_id = self._resolve_user(account.id, payload.get("metadata") or {})
        if user_id is None:
            self._logger.log("webhook_ignored", type="account.updated", account=account.id, reason="unknown_account")
            return WebhookResult(state=WebhookState.APPLIED, event_type="account.updated", detail="unknown_account")
        self._store.ensure(user_id)
        mirror = self._store.write_status(
            user_id,
            capabilities=account.capabilities,
            currently_due=account.currently_due,
            disabled_reason=account.disabled_reason,
            version=int(event.get("created") or 0),
            reject_stale=True,
        )
        if mirror is None:
            self._logger.log("webhook_stale_event", account=account.id, event_id=event.get("id"))
            return WebhookResult(state=WebhookState.APPLIED, event_type="account.updated", detail="stale")
        self._logger.log(
            "webhook_applied",
            type="account.updated",
            account=account.id,
            kyc=mirror.kyc_status.value,
            currently_due=len(mirror.currently_due),
        )
        return WebhookResult(state=WebhookState.APPLIED, event_type="account.updated")

    def _on_payment_succeeded(self, event: Mapping[str, Any]) -> WebhookResult:
        payment = self._object(event)
        transfer = payment.get("transfer_data") or {}
        record = PaymentRecord(
            payment_id=str(payment.get("id", "")),
            amount_cents=int(payment.get("amount") or 0),
            currency=str(payment.get("currency") or "usd"),
            status=str(payment.get("status") or "succeeded"),
            external_account_id=transfer.get("destination") or payment.get("on_behalf_of"),
        )
        if not record.payment_id:
            self._logger.log("webhook_ignored", type="payment_intent.succeeded", reason="missing_id")
            return WebhookResult(state=WebhookState.APPLIED, event_type="payment_intent.succeeded", detail="missing_id")
        if self._store.record_payment(record):
            self._logger.log("payment_recorded", payment=record.payment_id, amount=record.amount_cents)
            return WebhookResult(state=WebhookState.APPLIED, event_type="payment_intent.succeeded")
        self._logger.log("payment_duplicate", payment=record.payment_id)
        return WebhookResult(state=WebhookState.APPLIED, event_type="payment_intent.succeeded", detail="duplicate")

    def _on_payment_failed(self, event: Mapping[str, Any]) -> WebhookResult:
        payment = self._object(event)
        error = payment.get("last_payment_error") or {}
        self._logger.log(
            "payment_failed",
            payment=payment.get("id"),
            amount=payment.get("amount"),
            code=error.get("code"),
            decline_code=error.get("decline_code"),
        )
        return WebhookResult(state=WebhookState.APPLIED, event_type="payment_intent.payment_failed")


__all__ = ["EventHandler", "WebhookReconciler"]
