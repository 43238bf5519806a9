# -*- coding: utf-8 -*-
"""One-shot import of legacy unencrypted entries into the encrypted store."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import json
import logging

from .crypto import Session
from .errors import ValidationFailure
from .models import JournalEntry, validate_date_key
from .store import SyncStore

log = logging.getLogger(__name__)

LEGACY_KEY = "sunrise_entries"


@dataclass(frozen=True)
class LegacyScan:
    found: bool
    count: int


class LegacyStore:
    """Key/value file standing in for the browser's local storage.

    The file is a JSON object of storage key -> string value. The journal
    sits under ``sunrise_entries`` as a JSON string of ``date_key -> entry``.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


def _legacy_pairs(raw: str) -> List[Tuple[str, Any]]:
    entries = json.loads(raw)
    if not isinstance(entries, dict):
        raise ValueError("Legacy journal is not a JSON object")
    pairs: List[Tuple[str, Any]] = []
    for date_key, value in entries.items():
        for item in value if isinstance(value, list) else [value]:
            pairs.append((date_key, item))
    return pairs


class MigrationImporter:
    """Moves legacy entries into the encrypted store through ``SyncStore``."""

    def __init__(self, legacy: LegacyStore, store: SyncStore, key: str = LEGACY_KEY) -> None:
        self.legacy = legacy
        self.store = store
        self.key = key

    def has_legacy_entries(self) -> LegacyScan:
        """Count legacy days without touching the legacy store."""
        try:
            raw = self.legacy.get_item(self.key)
            if not raw:
                return LegacyScan(found=False, count=0)
            entries = json.loads(raw)
            count = len(entries) if isinstance(entries, dict) else 0
        except (OSError, ValueError) as exc:
            log.warning("Legacy store unreadable: %s", exc)
            return LegacyScan(found=False, count=0)
        return LegacyScan(found=count > 0, count=count)

    async def import_legacy_entries(self, session: Session) -> int:
        """Encrypt and upload every legacy entry, then remove the legacy key.

        Entries are saved one at a time. Items that are not entry objects,
        sit under a malformed date key or have no content are logged and
        skipped. If a save fails the error propagates and the legacy key is
        left in place; running the import again skips entries that already
        reached the store. Returns the number of entries now in the store
        (written or already present).
        """
        raw = self.legacy.get_item(self.key)
        if not raw:
            return 0

        try:
            pairs = _legacy_pairs(raw)
        except ValueError as exc:
            raise ValidationFailure(f"Legacy journal is unreadable: {exc}") from exc
        written = present = skipped = 0
        for date_key, item in pairs:
            try:
                validate_date_key(date_key)
                entry = JournalEntry.from_dict(item)
            except ValidationFailure as exc:
                log.warning("Skipping malformed legacy entry for %r: %s", date_key, exc)
                skipped += 1
                continue
            if not entry.has_content():
                log.warning("Skipping empty legacy entry for %s", date_key)
                skipped += 1
                continue
            if await self.store.append_entry(date_key, entry, session, dedupe=True):
                written += 1
            else:
                present += 1

        self.legacy.remove_item(self.key)
        log.info(
            "Imported %d legacy entries for user %s (%d already present, %d skipped)",
            written,
            session.user_id,
            present,
            skipped,
        )
        return written + present

    def discard_legacy_entries(self) -> None:
        """Drop the legacy journal without importing it."""
        self.legacy.remove_item(self.key)
