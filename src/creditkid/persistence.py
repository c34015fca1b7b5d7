"""Persistence and SQLModel definitions for the account mirror."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Dict, Mapping, Optional, Sequence, Tuple

from sqlalchemy import case, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .config import SQLITE_FILE_NAME
from .exceptions import StepOutOfOrder
from .models import (
    AccountMirror,
    Address,
    CapabilityStatus,
    DateOfBirth,
    PaymentRecord,
    PersonalProfile,
    utcnow,
)

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
engine = create_engine(
    f"sqlite:///{SQLITE_FILE_NAME}",
    echo=False,
    connect_args={"check_same_thread": False},
)


class AccountMirrorRecord(SQLModel, table=True):
    """One row per user. Column groups are written by different writers:

    account: external_account_id (write-once)
    profile: profile_json
    status: capabilities_json, currently_due_json, disabled_reason, status_version
    cardholder: cardholder_id
    card: virtual_card_id
    """

    user_id: str = Field(primary_key=True)
    external_account_id: Optional[str] = Field(default=None, index=True)
    profile_json: Optional[str] = None
    cardholder_id: Optional[str] = None
    virtual_card_id: Optional[str] = None
    capabilities_json: str = "{}"
    currently_due_json: str = "[]"
    disabled_reason: Optional[str] = None
    status_version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_synced_at: Optional[datetime] = None


class PaymentRow(SQLModel, table=True):
    payment_id: str = Field(primary_key=True)
    amount_cents: int
    currency: str = "usd"
    status: str
    external_account_id: Optional[str] = Field(default=None, index=True)
    recorded_at: datetime = Field(default_factory=utcnow)


def create_db_and_tables(target: Optional[Engine] = None) -> None:
    SQLModel.metadata.create_all(target or engine)


# ---------------------------------------------------------------------------
# Row conversion helpers
# ---------------------------------------------------------------------------
def _profile_to_json(profile: PersonalProfile) -> str:
    return json.dumps(
        {
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "email": profile.email,
            "phone": profile.phone,
            "dob": profile.dob.as_dict(),
            "address": {
                "line1": profile.address.line1,
                "line2": profile.address.line2,
                "city": profile.address.city,
                "state": profile.address.state,
                "postal_code": profile.address.postal_code,
                "country": profile.address.country,
            },
        },
        sort_keys=True,
    )


def _profile_from_json(raw: Optional[str]) -> Optional[PersonalProfile]:
    if not raw:
        return None
    data = json.loads(raw)
    address = data.get("address") or {}
    dob = data.get("dob") or {}
    return PersonalProfile(
        first_name=data.get("first_name", ""),
        last_name=data.get("last_name", ""),
        email=data.get("email", ""),
        phone=data.get("phone", ""),
        dob=DateOfBirth(day=int(dob.get("day", 0)), month=int(dob.get("month", 0)), year=int(dob.get("year", 0))),
        address=Address(
            line1=address.get("line1", ""),
            line2=address.get("line2", ""),
            city=address.get("city", ""),
            state=address.get("state", ""),
            postal_code=address.get("postal_code", ""),
            country=address.get("country", "US"),
        ),
    )


def _mirror_from_row(row: AccountMirrorRecord) -> AccountMirror:
    capabilities = {name: CapabilityStatus.parse(status) for name, status in json.loads(row.capabilities_json).items()}
    return AccountMirror(
        user_id=row.user_id,
        external_account_id=row.external_account_id,
        cardholder_id=row.cardholder_id,
        virtual_card_id=row.virtual_card_id,
        capabilities=capabilities,
        currently_due=tuple(json.loads(row.currently_due_json)),
        disabled_reason=row.disabled_reason,
        status_version=row.status_version,
        profile=_profile_from_json(row.profile_json),
        last_synced_at=row.last_synced_at,
    )


def _payment_from_row(row: PaymentRow) -> PaymentRecord:
    return PaymentRecord(
        payment_id=row.payment_id,
        amount_cents=row.amount_cents,
        currency=row.currency,
        status=row.status,
        external_account_id=row.external_account_id,
        recorded_at=row.recorded_at,
    )


# ---------------------------------------------------------------------------
# Account mirror store
# ---------------------------------------------------------------------------
class AccountMirrorStore:
    """Persisted per-user account mirror with field-group scoped writes.

    Each write opens its own transaction and assigns only the columns of
    its field group; the ORM flushes changed columns only, so a status write
    and a card write on the same row never overwrite each other.
    """

    def __init__(self, db_engine: Optional[Engine] = None) -> None:
        self._engine = db_engine or engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def get(self, user_id: str) -> AccountMirror:
        """Return the mirror for ``user_id``; an empty mirror when none exists yet."""

        with Session(self._engine) as session:
            row = session.get(AccountMirrorRecord, user_id)
            if row is None:
                return AccountMirror(user_id=user_id)
            return _mirror_from_row(row)

    def ensure(self, user_id: str) -> AccountMirror:
        with Session(self._engine) as session:
            row = session.get(AccountMirrorRecord, user_id)
            if row is None:
                row = AccountMirrorRecord(user_id=user_id)
                session.add(row)
                session.commit()
                session.refresh(row)
            return _mirror_from_row(row)

    def user_for_account(self, external_account_id: str) -> Optional[str]:
        with Session(self._engine) as session:
            row = session.exec(
                select(AccountMirrorRecord).where(AccountMirrorRecord.external_account_id == external_account_id)
            ).first()
            return row.user_id if row else None

    def set_external_account(self, user_id: str, external_account_id: str, profile: PersonalProfile) -> AccountMirror:
        """Record the external account id (write-once) and the captured profile."""

        with Session(self._engine) as session:
            row = session.get(AccountMirrorRecord, user_id)
            if row is None:
                row = AccountMirrorRecord(user_id=user_id)
            if row.external_account_id and row.external_account_id != external_account_id:
                raise StepOutOfOrder("An external account is already linked to this user.")
            row.external_account_id = external_account_id
            row.profile_json = _profile_to_json(profile)
            row.last_synced_at = utcnow()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _mirror_from_row(row)

    def write_status(
        self,
        user_id: str,
        *,
        capabilities: Mapping[str, CapabilityStatus],
        currently_due: Sequence[str],
        disabled_reason: Optional[str],
        version: int,
        reject_stale: bool = False,
    ) -> Optional[AccountMirror]:
        """Overwrite the status group as one unit.

        The group is written by a single conditional ``UPDATE`` so concurrent
        writers never interleave columns. With ``reject_stale`` the write is
        skipped (``None`` returned) when the stored version is newer than
        ``version``; otherwise the stored version never moves backwards.
        """

        payload: Dict[str, str] = {name: CapabilityStatus(status).value for name, status in capabilities.items()}
        columns = AccountMirrorRecord.__table__.c
        statement = update(AccountMirrorRecord.__table__).where(columns.user_id == user_id)
        if reject_stale:
            statement = statement.where(columns.status_version <= version)
            next_version = version
        else:
            next_version = case((columns.status_version > version, columns.status_version), else_=version)
        statement = statement.values(
            capabilities_json=json.dumps(payload, sort_keys=True),
            currently_due_json=json.dumps(list(currently_due)),
            disabled_reason=disabled_reason,
            status_version=next_version,
            last_synced_at=utcnow(),
        )
        with self._engine.begin() as connection:
            written = connection.execute(statement).rowcount
        if written:
            return self.get(user_id)
        with Session(self._engine) as session:
            if session.get(AccountMirrorRecord, user_id) is None:
                raise StepOutOfOrder("No account mirror exists for this user.")
        return None

    def set_cardholder(self, user_id: str, cardholder_id: str) -> AccountMirror:
        with Session(self._engine) as session:
            row = session.get(AccountMirrorRecord, user_id)
            if row is None or not row.external_account_id:
                raise StepOutOfOrder("Create the account before the cardholder.")
            row.cardholder_id = cardholder_id
            row.last_synced_at = utcnow()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _mirror_from_row(row)

    def set_virtual_card(self, user_id: str, card_id: str) -> AccountMirror:
        with Session(self._engine) as session:
            row = session.get(AccountMirrorRecord, user_id)
            if row is None or not row.cardholder_id:
                raise StepOutOfOrder("Create the cardholder before issuing a card.")
            row.virtual_card_id = card_id
            row.last_synced_at = utcnow()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _mirror_from_row(row)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def record_payment(self, record: PaymentRecord) -> bool:
        """Insert ``record`` unless its payment id already exists. Returns ``True`` on insert."""

        with Session(self._engine) as session:
            if session.get(PaymentRow, record.payment_id) is not None:
                return False
            session.add(
                PaymentRow(
                    payment_id=record.payment_id,
                    amount_cents=record.amount_cents,
                    currency=record.currency,
                    status=record.status,
                    external_account_id=record.external_account_id,
                    recorded_at=record.recorded_at,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def payments(self, external_account_id: Optional[str] = None) -> Tuple[PaymentRecord, ...]:
        with Session(self._engine) as session:
            query = select(PaymentRow)
            if external_account_id is not None:
                query = query.where(PaymentRow.external_account_id == external_account_id)
            rows = session.exec(query.order_by(PaymentRow.recorded_at)).all()
            return tuple(_payment_from_row(row) for row in rows)


__all__ = [
    "AccountMirrorRecord",
    "AccountMirrorStore",
    "PaymentRow",
    "create_db_and_tables",
    "engine",
]
