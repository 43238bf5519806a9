# -*- coding: utf-8 -*-
"""Decrypted entry cache kept in step with an encrypted row store.

Save policy: **append**. Each ``(user_id, date_key)`` row holds the whole
list of entries saved that day, encrypted as one JSON array. Saving reads
the day's row, appends, re-encrypts with a fresh IV and upserts. Rows
written by older clients hold a single JSON object; they are read as a
one-entry day and rewritten as a list on the next save.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol
import copy
import json
import logging

from .crypto import Session, decrypt_json, encrypt_json
from .errors import DecryptionFailure, ValidationFailure
from .models import (
    EncryptedRecord,
    FetchReport,
    JournalEntry,
    utc_now_iso,
    validate_date_key,
)

log = logging.getLogger(__name__)

EntriesCache = Dict[str, List[JournalEntry]]


class RowStore(Protocol):
    """Row-level contract every backend honours."""

    async def get_profile_salt(self, user_id: str) -> Optional[str]:
        ...

    async def insert_profile(self, user_id: str, salt: str) -> None:
        ...

    async def select_entries(self, user_id: str) -> List[EncryptedRecord]:
        ...

    async def select_entry(self, user_id: str, date_key: str) -> Optional[EncryptedRecord]:
        ...

    async def upsert_entry(self, record: EncryptedRecord) -> None:
        ...

    async def delete_entries(self, user_id: str) -> int:
        ...


def _require_open(session: Session) -> None:
    if session.closed:
        raise ValidationFailure("Session is closed")


def _decode_day(payload: Any) -> List[JournalEntry]:
    if isinstance(payload, list):
        return [JournalEntry.from_dict(p) for p in payload]
    return [JournalEntry.from_dict(payload)]


def _open_record(record: EncryptedRecord, session: Session) -> List[JournalEntry]:
    """Decrypt one row into its day's entries or raise DecryptionFailure."""
    payload = decrypt_json(record.ciphertext, record.iv, session.key)
    try:
        return _decode_day(payload)
    except ValidationFailure as exc:
        raise DecryptionFailure(f"Unreadable payload for {record.date_key}") from exc


class SyncStore:
    """In-memory projection of one user's rows, as of the last fetch."""

    def __init__(self, rows: RowStore) -> None:
        self.rows = rows
        self._cache: EntriesCache = {}
        self._owner: Optional[str] = None
        self.last_fetch = FetchReport()

    @property
    def owner(self) -> Optional[str]:
        """User id whose rows the cache currently holds."""
        return self._owner

    # -----------------------------------------------------------------
    # Remote operations
    # -----------------------------------------------------------------

    async def fetch_all_entries(self, session: Session) -> EntriesCache:
        """Replace the cache with every decryptable row of the session's user.

        Rows that fail to decrypt are logged and left out; ``last_fetch``
        records which date keys were skipped.
        """
        _require_open(session)
        records = await self.rows.select_entries(session.user_id)
        records = sorted(
            (r for r in records if r.user_id == session.user_id),
            key=lambda r: r.date_key,
            reverse=True,
        )

        cache: EntriesCache = {}
        report = FetchReport(total=len(records))
        for record in records:
            try:
                cache[record.date_key] = _open_record(record, session)
            except DecryptionFailure as exc:
                log.warning("Failed to decrypt entry for %s: %s", record.date_key, exc)
                report.skipped.append(record.date_key)
                continue
            report.decrypted += 1

        if not report.complete:
            log.warning(
                "Loaded %d of %d rows for user %s; %d could not be decrypted",
                report.decrypted,
                report.total,
                session.user_id,
                len(report.skipped),
            )
        self._cache = cache
        self._owner = session.user_id
        self.last_fetch = report
        return self.get_entries()

    async def append_entry(
        self,
        date_key: str,
        entry: JournalEntry,
        session: Session,
        *,
        dedupe: bool = False,
    ) -> bool:
        """Add *entry* to the day's stored list and upsert the row.

        The current row is re-read first so another device's entries for the
        same day are kept. A row that cannot be decrypted is never
        overwritten: DecryptionFailure propagates instead. The saved day is
        written into the cache; a cache with no owner yet is claimed by the
        session's user. With *dedupe*, an
        entry already present for the day is not written again and False is
        returned.
        """
        validate_date_key(date_key)
        if not entry.has_content():
            raise ValidationFailure("Entry has no content")
        _require_open(session)

        existing = await self.rows.select_entry(session.user_id, date_key)
        day = _open_record(existing, session) if existing is not None else []

        if dedupe and entry in day:
            log.debug("Entry for %s already stored; skipping", date_key)
            self._remember(session.user_id, date_key, day)
            return False

        day.append(entry)
        ciphertext, iv = encrypt_json([e.to_dict() for e in day], session.key)
        await self.rows.upsert_entry(
            EncryptedRecord(
                user_id=session.user_id,
                date_key=date_key,
                ciphertext=ciphertext,
                iv=iv,
                updated_at=utc_now_iso(),
            )
        )
        self._remember(session.user_id, date_key, day)
        return True

    async def delete_all_entries(self, session: Session) -> int:
        """Delete every row owned by the session's user and empty the cache."""
        _require_open(session)
        removed = await self.rows.delete_entries(session.user_id)
        log.info("Deleted %d rows for user %s", removed, session.user_id)
        self._cache = {}
        self._owner = session.user_id
        self.last_fetch = FetchReport()
        return removed

    # -----------------------------------------------------------------
    # Cache views
    # -----------------------------------------------------------------

    def _remember(self, user_id: str, date_key: str, day: List[JournalEntry]) -> None:
        # An unowned cache is claimed; it holds only the saved days until a fetch.
        if self._owner is None:
            self._owner = user_id
        elif self._owner != user_id:
            return
        self._cache[date_key] = copy.deepcopy(day)
        self._cache = dict(sorted(self._cache.items(), reverse=True))

    def get_entries(self) -> EntriesCache:
        """Deep copy of the cache; later saves do not show through it."""
        return copy.deepcopy(self._cache)

    def entries_for_day(self, date_key: str) -> List[JournalEntry]:
        return copy.deepcopy(self._cache.get(date_key, []))

    def entry_count(self) -> int:
        return sum(len(day) for day in self._cache.values())

    def export_json(self) -> str:
        """Cache as pretty JSON: ``{date_key: [entry, ...]}``."""
        data = {k: [e.to_dict() for e in day] for k, day in self._cache.items()}
        return json.dumps(data, indent=2, ensure_ascii=False)

    @staticmethod
    def export_filename(date_key: str) -> str:
        return f"sunrise-journal-{date_key}.json"

    def clear(self) -> None:
        """Forget everything; called on sign-out."""
        self._cache = {}
        self._owner = None
        self.last_fetch = FetchReport()
