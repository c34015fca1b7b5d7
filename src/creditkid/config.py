"""Configuration constants for the CreditKid onboarding service."""
from __future__ import annotations

import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL") or os.environ.get("APP_BASE_URL") or "https://creditkid.vercel.app"
STRIPE_RETURN_PATH = os.environ.get("STRIPE_RETURN_PATH", "banking/setup/success")
STRIPE_REFRESH_PATH = os.environ.get("STRIPE_REFRESH_PATH", "banking/setup/stripe-connection?refresh=true")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SQLITE_FILE_NAME = os.environ.get("CREDITKID_SQLITE", "creditkid.db")
LEDGER_TIMEOUT_SECONDS = float(os.environ.get("LEDGER_TIMEOUT_SECONDS", "20"))
WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("WEBHOOK_TOLERANCE_SECONDS", "300"))
EVENT_LOG_PATH = os.environ.get("CREDITKID_EVENT_LOG", "")

SESSION_TOKEN_LIFETIME = timedelta(days=30)
MINIMUM_TOPUP_CENTS = 100


def join_url(base_url: str, path: str) -> str:
    """Join ``base_url`` and ``path`` without doubled slashes."""

    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


__all__ = [
    "EVENT_LOG_PATH",
    "LEDGER_TIMEOUT_SECONDS",
    "MINIMUM_TOPUP_CENTS",
    "PUBLIC_BASE_URL",
    "SESSION_SECRET",
    "SESSION_TOKEN_LIFETIME",
    "SQLITE_FILE_NAME",
    "STRIPE_REFRESH_PATH",
    "STRIPE_RETURN_PATH",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "WEBHOOK_TOLERANCE_SECONDS",
    "join_url",
]
