"""FastAPI frontend for the CreditKid onboarding service.

Serve with ``uvicorn creditkid.webapp:app``. Every onboarding route opens an
orchestrator handle for the bearer-token user and closes it when the request
ends; the webhook route verifies the raw body before touching the mirror.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterator, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from .api import ApiExporter
from .config import (
    EVENT_LOG_PATH,
    LEDGER_TIMEOUT_SECONDS,
    SESSION_SECRET,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    WEBHOOK_TOLERANCE_SECONDS,
)
from .exceptions import CreditKidError, ErrorKind, SignatureInvalid
from .ledger import MAX_SPENDING_LIMIT_CENTS, StripeLedgerClient, configure_stripe
from .ops import HealthMonitor, StructuredLogger
from .orchestrator import OnboardingOrchestrator, OnboardingSessions
from .persistence import AccountMirrorStore, create_db_and_tables
from .security import bearer_token, decode_session_token
from .webhooks import WebhookReconciler

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.LEDGER_REJECTED: 400,
    ErrorKind.INCOMPLETE_PROFILE: 400,
    ErrorKind.CAPABILITY_NOT_ENABLED: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 400,
    ErrorKind.SIGNATURE_INVALID: 400,
    ErrorKind.STEP_OUT_OF_ORDER: 409,
    ErrorKind.RESOURCE_MISSING: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UNKNOWN: 502,
}

exporter = ApiExporter()


def status_for(exc: CreditKidError) -> int:
    return STATUS_BY_KIND.get(exc.kind, 502)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def current_user(request: Request) -> str:
    token = bearer_token(request.headers.get("authorization"))
    if not token:
        raise HTTPException(status_code=401, detail="Sign in to continue.")
    decoded = decode_session_token(token, secret=request.app.state.token_secret)
    if decoded is None:
        raise HTTPException(status_code=401, detail="Your session has expired. Please sign in again.")
    user_id, _ = decoded
    return user_id


def onboarding(request: Request, user_id: str = Depends(current_user)) -> Iterator[OnboardingOrchestrator]:
    sessions: OnboardingSessions = request.app.state.sessions
    with sessions.session(user_id) as handle:
        yield handle


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "0.0.0.0"


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(
    *,
    sessions: Optional[OnboardingSessions] = None,
    reconciler: Optional[WebhookReconciler] = None,
    health: Optional[HealthMonitor] = None,
    token_secret: str = SESSION_SECRET,
) -> FastAPI:
    """Build the application; collaborators default to the configured Stripe and SQLite stack."""

    health = health or HealthMonitor()
    managed_store = sessions is None
    if sessions is None:
        configure_stripe(LEDGER_TIMEOUT_SECONDS)
        logger = StructuredLogger(path=Path(EVENT_LOG_PATH) if EVENT_LOG_PATH else None)
        sessions = OnboardingSessions(
            ledger=StripeLedgerClient(STRIPE_SECRET_KEY),
            store=AccountMirrorStore(),
            logger=logger,
        )
        health.ledger_configured = bool(STRIPE_SECRET_KEY)
    if reconciler is None:
        reconciler = WebhookReconciler(
            sessions.store,
            secret=STRIPE_WEBHOOK_SECRET,
            tolerance_seconds=WEBHOOK_TOLERANCE_SECONDS,
            logger=sessions.logger,
            health=health,
        )
        health.webhook_secret_configured = bool(STRIPE_WEBHOOK_SECRET)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if managed_store:
            create_db_and_tables(sessions.store.engine)
        yield

    app = FastAPI(title="CreditKid", lifespan=lifespan)
    app.state.sessions = sessions
    app.state.reconciler = reconciler
    app.state.health = health
    app.state.token_secret = token_secret

    @app.exception_handler(CreditKidError)
    async def creditkid_error_handler(_: Request, exc: CreditKidError) -> JSONResponse:
        return JSONResponse(exporter.error(exc), status_code=status_for(exc))

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------
    @app.get("/onboarding/status")
    def onboarding_status(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.account_snapshot(handle.get_account_status())

    @app.post("/onboarding/account")
    def onboarding_account(
        request: Request,
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        account_id = handle.create_account(payload, tos_ip=_client_ip(request))
        return {"externalAccountId": account_id, "account": exporter.account_snapshot(handle.get_account_status())}

    @app.get("/onboarding/account")
    def onboarding_account_details(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.account_details(handle.get_account_details())

    @app.post("/onboarding/account/update")
    def onboarding_account_update(
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        return exporter.requirements(handle.update_account_info(payload))

    @app.post("/onboarding/terms")
    def onboarding_terms(
        request: Request,
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        account = handle.accept_terms_of_service(ip=_client_ip(request))
        return {"accountId": account.id, "tosAccepted": True}

    @app.post("/onboarding/bank-account")
    def onboarding_bank_account(
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        bank = handle.link_bank_account(
            str(payload.get("routingNumber") or ""),
            str(payload.get("accountNumber") or ""),
            str(payload.get("accountHolderName") or ""),
        )
        return {"externalAccountId": handle.get_account_status().external_account_id, **exporter.bank_account(bank)}

    @app.post("/onboarding/capabilities")
    def onboarding_capabilities(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.account_snapshot(handle.request_capabilities())

    @app.post("/onboarding/poll")
    def onboarding_poll(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.account_snapshot(handle.poll_status())

    @app.post("/onboarding/link")
    def onboarding_link(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.account_link(handle.create_onboarding_link())

    @app.post("/onboarding/cardholder")
    def onboarding_cardholder(
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        return {"cardholderId": handle.create_cardholder(payload)}

    @app.post("/onboarding/fund")
    def onboarding_fund(
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        topup = handle.ensure_funds_for_card(payload.get("minimumCents", 0))
        return {"toppedUp": topup is not None, "topup": exporter.top_up(topup) if topup else None}

    @app.post("/onboarding/topup")
    def onboarding_topup(
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        return exporter.top_up(handle.top_up(payload.get("amountCents", 0)))

    @app.post("/onboarding/card")
    def onboarding_card(
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        limit = payload.get("spendingLimitCents", MAX_SPENDING_LIMIT_CENTS)
        return {"virtualCardId": handle.issue_card(spending_limit_cents=limit)}

    @app.get("/onboarding/card")
    def onboarding_card_details(
        reveal: bool = Query(False),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        return exporter.card_details(handle.get_card_details(reveal=reveal))

    # ------------------------------------------------------------------
    # Banking
    # ------------------------------------------------------------------
    @app.get("/banking/funding-balance")
    def banking_funding_balance(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.funding_balance(handle.get_funding_balance())

    @app.get("/banking/balance")
    def banking_balance(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.connect_balance(handle.get_connect_balance())

    @app.get("/banking/transactions")
    def banking_transactions(
        limit: int = Query(10),
        starting_after: Optional[str] = Query(None, alias="startingAfter"),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        return exporter.transactions(handle.list_transactions(limit=limit, starting_after=starting_after))

    @app.get("/banking/payouts")
    def banking_payouts(
        limit: int = Query(10),
        starting_after: Optional[str] = Query(None, alias="startingAfter"),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        return exporter.payouts(handle.list_payouts(limit=limit, starting_after=starting_after))

    @app.get("/banking/payments")
    def banking_payments(handle: OnboardingOrchestrator = Depends(onboarding)) -> Dict[str, object]:
        return exporter.payments(handle.list_payments())

    @app.post("/banking/payouts")
    def banking_create_payout(
        payload: Dict[str, Any] = Body(default={}),
        handle: OnboardingOrchestrator = Depends(onboarding),
    ) -> Dict[str, object]:
        payout = handle.create_payout(payload.get("amountCents", 0), currency=str(payload.get("currency") or "usd"))
        return exporter.payout(payout)

    # ------------------------------------------------------------------
    # Webhooks and health
    # ------------------------------------------------------------------
    @app.post("/webhooks/stripe")
    async def stripe_webhook(request: Request):
        body = await request.body()
        signature = request.headers.get("stripe-signature")
        try:
            await run_in_threadpool(request.app.state.reconciler.handle, body, signature)
        except SignatureInvalid as exc:
            return PlainTextResponse(exc.message, status_code=400)
        return JSONResponse({"received": True})

    @app.get("/healthz")
    def healthz(request: Request) -> Dict[str, object]:
        return request.app.state.health.status()

    return app


app = create_app()


__all__ = ["STATUS_BY_KIND", "app", "create_app", "current_user", "onboarding", "status_for"]
