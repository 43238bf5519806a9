# -*- coding: utf-8 -*-
"""Plain data types shared by the store, the backends and the importer."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
import re

from .errors import ValidationFailure

DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SAVED_AT = "savedAt"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def validate_date_key(date_key: str) -> str:
    """Return *date_key* unchanged if it is a real YYYY-MM-DD calendar day."""
    if not isinstance(date_key, str) or not DATE_KEY_RE.match(date_key):
        raise ValidationFailure(f"Invalid date key: {date_key!r}")
    try:
        date.fromisoformat(date_key)
    except ValueError as exc:
        raise ValidationFailure(f"Invalid date key: {date_key!r}") from exc
    return date_key


@dataclass
class JournalEntry:
    """One saved journal form: ordered field values plus the save time."""

    fields: Dict[str, str] = field(default_factory=dict)
    saved_at: str = ""

    @classmethod
    def create(cls, fields: Mapping[str, str]) -> "JournalEntry":
        """New entry stamped with the current time; values are stripped."""
        return cls(
            fields={k: (v or "").strip() for k, v in fields.items()},
            saved_at=utc_now_iso(),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JournalEntry":
        if not isinstance(data, Mapping):
            raise ValidationFailure("Journal entry must be a JSON object")
        fields = {k: v for k, v in data.items() if k != SAVED_AT}
        return cls(fields=fields, saved_at=str(data.get(SAVED_AT) or ""))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {SAVED_AT: self.saved_at}
        out.update(self.fields)
        return out

    def has_content(self) -> bool:
        return any(v for v in self.fields.values())


@dataclass(frozen=True)
class EncryptedRecord:
    """One row of the remote ``entries`` collection."""

    user_id: str
    date_key: str
    ciphertext: str
    iv: str
    updated_at: str


@dataclass(frozen=True)
class Identity:
    """What an identity provider hands back after a password sign-in."""

    user_id: str
    email: str
    access_token: Optional[str] = field(default=None, repr=False)


@dataclass
class FetchReport:
    """Outcome of the last full fetch: how many rows were dropped and which."""

    total: int = 0
    decrypted: int = 0
    skipped: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.total == self.decrypted
