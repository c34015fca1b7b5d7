"""Signed bearer tokens identifying the authenticated user."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from datetime import datetime
from typing import Optional, Tuple

from .config import SESSION_SECRET, SESSION_TOKEN_LIFETIME


def _signature(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def encode_session_token(
    user_id: str,
    *,
    secret: str = SESSION_SECRET,
    expires_at: Optional[datetime] = None,
) -> str:
    """Return ``urlsafe_b64("user_id:expires:signature")`` for ``user_id``."""

    if ":" in user_id:
        raise ValueError("user_id must not contain ':'")
    expiry = expires_at or datetime.now() + SESSION_TOKEN_LIFETIME
    payload = f"{user_id}:{int(expiry.timestamp())}"
    token_raw = f"{payload}:{_signature(payload, secret)}".encode("utf-8")
    return base64.urlsafe_b64encode(token_raw).decode("utf-8")


def decode_session_token(
    token: str,
    *,
    secret: str = SESSION_SECRET,
    at: Optional[datetime] = None,
) -> Optional[Tuple[str, datetime]]:
    """Return ``(user_id, expires_at)`` for a valid, unexpired token, else ``None``."""

    try:
        decoded = base64.urlsafe_b64decode(token.encode("utf-8")).decode("utf-8")
        user_id, expires_raw, signature = decoded.split(":")
        expires_at = datetime.fromtimestamp(int(expires_raw))
    except (binascii.Error, UnicodeDecodeError, ValueError, OverflowError, OSError):
        return None
    expected = _signature(f"{user_id}:{expires_raw}", secret)
    if not hmac.compare_digest(signature, expected):
        return None
    if expires_at < (at or datetime.now()):
        return None
    return user_id, expires_at


def bearer_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


__all__ = ["bearer_token", "decode_session_token", "encode_session_token"]
