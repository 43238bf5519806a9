#! /usr/bin/python3
# -*- coding: utf-8 -*-
"""SQLite row store and local identity provider for Sunrise Journal.

Implements the same row-level contract as the hosted backend in
``remote.py``: a ``user_profiles`` table holding each user's salt and an
``entries`` table keyed by ``(user_id, date_key)``.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional
import logging
import os
import uuid

import aiosqlite
from argon2.exceptions import VerifyMismatchError

from .crypto import PH
from .errors import (
    AuthenticationFailure,
    ProfileConflict,
    RemoteUnavailable,
    ValidationFailure,
)
from .models import EncryptedRecord, Identity

DB_PATH = os.environ.get("SUNRISE_JOURNAL_DB", "sunrise_journal.sqlite3")

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS users (
    id              TEXT PRIMARY KEY,
    email           TEXT UNIQUE NOT NULL,
    pwd_hash        TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_profiles (
    id              TEXT PRIMARY KEY,
    encryption_salt TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entries (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    date_key        TEXT NOT NULL,
    encrypted_data  TEXT NOT NULL,
    iv              TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    UNIQUE(user_id, date_key)
);

CREATE INDEX IF NOT EXISTS idx_entries_user ON entries(user_id);
"""


@asynccontextmanager
async def connect(path: str) -> AsyncIterator[aiosqlite.Connection]:
    """Open *path*; any SQLite failure surfaces as RemoteUnavailable."""
    try:
        async with aiosqlite.connect(path) as db:
            db.row_factory = aiosqlite.Row
            yield db
    except aiosqlite.Error as exc:
        raise RemoteUnavailable(f"Row store failure: {exc}") from exc


async def init_db(path: str = DB_PATH) -> None:
    """Create tables if they don't exist."""
    async with connect(path) as db:
        await db.executescript(SCHEMA_SQL)
        await db.commit()


def _row_to_record(row: aiosqlite.Row) -> EncryptedRecord:
    return EncryptedRecord(
        user_id=row["user_id"],
        date_key=row["date_key"],
        ciphertext=row["encrypted_data"],
        iv=row["iv"],
        updated_at=row["updated_at"],
    )


# ---------------------------------------------------------------------
# Row store
# ---------------------------------------------------------------------

class SqliteRowStore:
    """Row store backed by a single SQLite file."""

    def __init__(self, path: str = DB_PATH) -> None:
        self.path = path

    async def init_db(self) -> None:
        await init_db(self.path)

    async def get_profile_salt(self, user_id: str) -> Optional[str]:
        async with connect(self.path) as db:
            cur = await db.execute(
                "SELECT encryption_salt FROM user_profiles WHERE id = ?",
                (user_id,),
            )
            row = await cur.fetchone()
            await cur.close()
            return row["encryption_salt"] if row else None

    async def insert_profile(self, user_id: str, salt: str) -> None:
        """Insert the user's salt; ProfileConflict if one already exists."""
        async with connect(self.path) as db:
            try:
                await db.execute(
                    "INSERT INTO user_profiles (id, encryption_salt) VALUES (?, ?)",
                    (user_id, salt),
                )
            except aiosqlite.IntegrityError as exc:
                raise ProfileConflict(f"Profile already exists for {user_id}") from exc
            await db.commit()

    async def select_entries(self, user_id: str) -> List[EncryptedRecord]:
        """Return every row for *user_id*, newest date first."""
        async with connect(self.path) as db:
            cur = await db.execute(
                """
                SELECT user_id, date_key, encrypted_data, iv, updated_at
                  FROM entries
                 WHERE user_id = ?
                 ORDER BY date_key DESC
                """,
                (user_id,),
            )
            rows = await cur.fetchall()
            await cur.close()
            return [_row_to_record(r) for r in rows]

    async def select_entry(self, user_id: str, date_key: str) -> Optional[EncryptedRecord]:
        async with connect(self.path) as db:
            cur = await db.execute(
                """
                SELECT user_id, date_key, encrypted_data, iv, updated_at
                  FROM entries
                 WHERE user_id = ? AND date_key = ?
                """,
                (user_id, date_key),
            )
            row = await cur.fetchone()
            await cur.close()
            return _row_to_record(row) if row else None

    async def upsert_entry(self, record: EncryptedRecord) -> None:
        """Insert or replace the row for (user_id, date_key)."""
        async with connect(self.path) as db:
            await db.execute(
                """
                INSERT INTO entries (user_id, date_key, encrypted_data, iv, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date_key) DO UPDATE
                   SET encrypted_data = excluded.encrypted_data,
                       iv = excluded.iv,
                       updated_at = excluded.updated_at
                """,
                (
                    record.user_id,
                    record.date_key,
                    record.ciphertext,
                    record.iv,
                    record.updated_at,
                ),
            )
            await db.commit()

    async def delete_entries(self, user_id: str) -> int:
        """Delete all entries for a user; return the number of rows removed."""
        async with connect(self.path) as db:
            cur = await db.execute("DELETE FROM entries WHERE user_id = ?", (user_id,))
            await db.commit()
            return cur.rowcount


# ---------------------------------------------------------------------
# Local identity provider
# ---------------------------------------------------------------------

class LocalAuthProvider:
    """Email/password accounts stored next to the rows, hashed with Argon2."""

    def __init__(self, path: str = DB_PATH) -> None:
        self.path = path

    async def register(self, email: str, password: str) -> Identity:
        email = email.strip().lower()
        if not email or not password:
            raise ValidationFailure("Email and password required")

        user_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc).isoformat()
        async with connect(self.path) as db:
            try:
                await db.execute(
                    "INSERT INTO users (id, email, pwd_hash, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, email, PH.hash(password), created_at),
                )
            except aiosqlite.IntegrityError as exc:
                raise ValidationFailure("An account with this email already exists") from exc
            await db.commit()
        log.info("Registered local user %s", user_id)
        return Identity(user_id=user_id, email=email)

    async def sign_in(self, email: str, password: str) -> Identity:
        email = email.strip().lower()
        async with connect(self.path) as db:
            cur = await db.execute(
                "SELECT id, email, pwd_hash FROM users WHERE email = ?",
                (email,),
            )
            row = await cur.fetchone()
            await cur.close()
        if not row:
            raise AuthenticationFailure("Invalid login credentials")
        try:
            PH.verify(row["pwd_hash"], password)
        except VerifyMismatchError as exc:
            raise AuthenticationFailure("Invalid login credentials") from exc
        return Identity(user_id=row["id"], email=row["email"])

    async def sign_out(self, identity: Identity) -> None:
        """Nothing to revoke for local accounts."""
        return None
