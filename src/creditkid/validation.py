"""Local input checks run before any request reaches the ledger."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import date
from typing import Any, Mapping, Optional, Tuple

from .exceptions import ValidationError
from .models import Address, DateOfBirth, PersonalProfile

_DOB_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_NON_DIGITS = re.compile(r"\D")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MIN_BIRTH_YEAR = 1900

# (payload key, field label) pairs that must be non-empty to open an account.
REQUIRED_PROFILE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("firstName", "first name"),
    ("lastName", "last name"),
    ("email", "email"),
    ("phone", "phone number"),
    ("dob", "date of birth"),
    ("address", "street address"),
    ("city", "city"),
    ("state", "state"),
    ("zipCode", "ZIP code"),
    ("ssnLast4", "last 4 of SSN"),
)


def digits_only(value: object) -> str:
    return _NON_DIGITS.sub("", "" if value is None else str(value))


def parse_dob(value: Any, *, today: Optional[date] = None) -> DateOfBirth:
    """Parse ``MM/DD/YYYY`` strings or ``{day, month, year}`` mappings."""

    if isinstance(value, DateOfBirth):
        day, month, year = value.day, value.month, value.year
    elif isinstance(value, Mapping):
        try:
            day, month, year = int(value["day"]), int(value["month"]), int(value["year"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError("dob", "Date of birth needs a day, month and year.") from exc
    elif isinstance(value, str):
        match = _DOB_PATTERN.match(value.strip())
        if not match:
            raise ValidationError("dob", "Enter your date of birth as MM/DD/YYYY.")
        month, day, year = (int(part) for part in match.groups())
    else:
        raise ValidationError("dob", "Enter your date of birth as MM/DD/YYYY.")

    current = today or date.today()
    if not MIN_BIRTH_YEAR <= year <= current.year:
        raise ValidationError("dob", "Date of birth year is out of range.")
    try:
        born = date(year, month, day)
    except ValueError as exc:
        raise ValidationError("dob", "Date of birth is not a real calendar date.") from exc
    if born > current:
        raise ValidationError("dob", "Date of birth cannot be in the future.")
    return DateOfBirth(day=day, month=month, year=year)


def normalize_us_zip(value: object) -> Optional[str]:
    """Return the 5-digit ZIP for ``value`` (ZIP+4 is truncated) or ``None``."""

    digits = digits_only(value)
    if len(digits) < 5:
        return None
    return digits[:5]


def require_zip(value: object) -> str:
    normalized = normalize_us_zip(value)
    if normalized is None:
        raise ValidationError("zipCode", "Please enter a valid 5-digit US ZIP code.", code="postal_code_invalid")
    return normalized


def validate_routing_number(value: object) -> str:
    routing = digits_only(value)
    if len(routing) != 9:
        raise ValidationError("routingNumber", "Routing number must be exactly 9 digits.")
    return routing


def validate_account_number(value: object) -> str:
    account = digits_only(value)
    if len(account) < 4:
        raise ValidationError("accountNumber", "Account number must have at least 4 digits.")
    return account


def validate_ssn_last4(value: object) -> str:
    ssn = digits_only(value)
    if len(ssn) != 4:
        raise ValidationError("ssnLast4", "Enter the last 4 digits of your SSN.")
    return ssn


def validate_id_number(value: object) -> str:
    ssn = digits_only(value)
    if len(ssn) != 9:
        raise ValidationError("idNumber", "Enter your full 9-digit SSN.")
    return ssn


def validate_email(value: object) -> str:
    email = ("" if value is None else str(value)).strip()
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError("email", "Enter a valid email address.")
    return email


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value).strip()


def profile_from_payload(payload: Mapping[str, Any], *, today: Optional[date] = None) -> PersonalProfile:
    """Validate a personal-info form payload and build a :class:`PersonalProfile`.

    Fields are checked in form order so the first failure names the input
    the user should fix.
    """

    for key, label in REQUIRED_PROFILE_FIELDS:
        raw = payload.get(key)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raise ValidationError(key, f"Please enter your {label}.")

    dob = parse_dob(payload["dob"], today=today)
    zip_code = require_zip(payload["zipCode"])
    email = validate_email(payload["email"])
    ssn_last4 = validate_ssn_last4(payload["ssnLast4"])
    address = Address(
        line1=_text(payload, "address"),
        line2=_text(payload, "address2"),
        city=_text(payload, "city"),
        state=_text(payload, "state").upper(),
        postal_code=zip_code,
        country=_text(payload, "country") or "US",
    )
    return PersonalProfile(
        first_name=_text(payload, "firstName"),
        last_name=_text(payload, "lastName"),
        email=email,
        phone=_text(payload, "phone"),
        dob=dob,
        address=address,
        ssn_last4=ssn_last4,
    )


UPDATABLE_PROFILE_FIELDS: Tuple[str, ...] = (
    "firstName",
    "lastName",
    "email",
    "phone",
    "dob",
    "address",
    "address2",
    "city",
    "state",
    "zipCode",
    "ssnLast4",
    "idNumber",
)


def apply_profile_updates(
    base: PersonalProfile, payload: Mapping[str, Any], *, today: Optional[date] = None
) -> Tuple[PersonalProfile, Optional[str]]:
    """Merge the non-empty fields of ``payload`` into ``base``.

    Returns the updated profile and the full SSN when ``idNumber`` was sent.
    Each submitted field is validated the same way as at account creation.
    """

    present = {key: payload[key] for key in UPDATABLE_PROFILE_FIELDS if _text(payload, key)}
    if not present:
        raise ValidationError("fields", "Nothing to update. Fill in at least one field.")
    address = replace(
        base.address,
        line1=_text(present, "address") or base.address.line1,
        line2=_text(present, "address2") or base.address.line2,
        city=_text(present, "city") or base.address.city,
        state=_text(present, "state").upper() or base.address.state,
        postal_code=require_zip(present["zipCode"]) if "zipCode" in present else base.address.postal_code,
    )
    profile = replace(
        base,
        first_name=_text(present, "firstName") or base.first_name,
        last_name=_text(present, "lastName") or base.last_name,
        email=validate_email(present["email"]) if "email" in present else base.email,
        phone=_text(present, "phone") or base.phone,
        dob=parse_dob(present["dob"], today=today) if "dob" in present else base.dob,
        address=address,
        ssn_last4=validate_ssn_last4(present["ssnLast4"]) if "ssnLast4" in present else "",
    )
    id_number = validate_id_number(present["idNumber"]) if "idNumber" in present else None
    return profile, id_number


__all__ = [
    "MIN_BIRTH_YEAR",
    "REQUIRED_PROFILE_FIELDS",
    "UPDATABLE_PROFILE_FIELDS",
    "apply_profile_updates",
    "digits_only",
    "normalize_us_zip",
    "parse_dob",
    "profile_from_payload",
    "require_zip",
    "validate_account_number",
    "validate_email",
    "validate_id_number",
    "validate_routing_number",
    "validate_ssn_last4",
]
