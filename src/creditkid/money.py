"""Utilities for working with monetary values in CreditKid.

Every amount is an integer count of minor currency units (cents).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from .exceptions import ValidationError

CentsLike = Union[int, str]


def to_cents(value: CentsLike, *, field: str = "amount") -> int:
    """Convert ``value`` to an integer number of cents.

    Strings must hold a whole number; floats are refused so money never goes
    through binary floating point.
    """

    if isinstance(value, bool):
        raise ValidationError(field, "Amount must be a whole number of cents.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValidationError(field, "Amount must be a whole number of cents.") from exc
        if parsed != parsed.to_integral_value():
            raise ValidationError(field, "Amount must be a whole number of cents.")
        return int(parsed)
    raise ValidationError(field, f"Unsupported amount type: {type(value).__name__}")


def require_positive(amount: int, *, allow_zero: bool = False, field: str = "amount") -> int:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < 0:
            raise ValidationError(field, "Amount must be zero or greater.")
    else:
        if amount <= 0:
            raise ValidationError(field, "Amount must be greater than zero.")
    return amount


def format_cents(amount: int, currency: str = "usd") -> str:
    """Return ``amount`` as a currency formatted string (e.g. ``$12.34``)."""

    sign = "-" if amount < 0 else ""
    dollars, cents = divmod(abs(amount), 100)
    prefix = "$" if currency.lower() == "usd" else f"{currency.upper()} "
    return f"{sign}{prefix}{dollars:,}.{cents:02d}"


__all__ = ["CentsLike", "format_cents", "require_positive", "to_cents"]
