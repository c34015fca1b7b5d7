"""Operational utilities for CreditKid."""

from __future__ import annotations

import json
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, Optional

from .models import utcnow

# Keys whose values must never reach a log line.
REDACTED_FIELDS = frozenset({"ssn_last4", "account_number", "number", "cvc", "id_number"})


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self) -> None:
        self.database_online = True
        self.ledger_configured = False
        self.webhook_secret_configured = False
        self.last_webhook_at: Optional[datetime] = None

    def record_webhook(self, timestamp: Optional[datetime] = None) -> None:
        self.last_webhook_at = timestamp or utcnow()

    def status(self) -> dict:
        return {
            "database": "ok" if self.database_online else "down",
            "ledger": "configured" if self.ledger_configured else "missing_key",
            "webhooks": "configured" if self.webhook_secret_configured else "missing_secret",
            "last_webhook_age_seconds": self.webhook_age_seconds(),
        }

    def webhook_age_seconds(self) -> Optional[int]:
        if not self.last_webhook_at:
            return None
        return int((utcnow() - self.last_webhook_at).total_seconds())


class StructuredLogger:
    """Write JSON lines log entries for operator inspection."""

    def __init__(self, *, path: Path | None = None, max_entries: int = 1000) -> None:
        self.path = path
        self._entries: Deque[dict] = deque(maxlen=max_entries)

    def log(self, event_type: str, **fields: object) -> dict:
        cleaned = {key: ("[redacted]" if key in REDACTED_FIELDS else value) for key, value in fields.items()}
        entry = {"timestamp": utcnow().isoformat(), "event": event_type, **cleaned}
        self._entries.append(entry)
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries)[-limit:]

    def events(self, event_type: str) -> tuple[dict, ...]:
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


__all__ = ["HealthMonitor", "REDACTED_FIELDS", "StructuredLogger"]
