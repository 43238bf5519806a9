"""Shared test fixtures.

Keys are built from random material so most tests skip the 600k-iteration
PBKDF2 run; tests of the derivation itself call ``derive_key`` directly.
Config, log and database files all land under ``tmp_path``.
"""

from __future__ import annotations

import os

import pytest
import pytest_asyncio

from sunrise_journal.crypto import JournalKey, Session
from sunrise_journal.db import LocalAuthProvider, SqliteRowStore
from sunrise_journal.store import SyncStore


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Point config and log directories at the test's tmp dir."""
    monkeypatch.setattr(
        "sunrise_journal.logic.user_config_dir", lambda *a, **k: str(tmp_path / "config")
    )
    monkeypatch.setattr(
        "sunrise_journal.log.user_log_dir", lambda *a, **k: str(tmp_path / "logs")
    )
    for name in ("SUNRISE_JOURNAL_DB", "SUNRISE_SUPABASE_URL", "SUNRISE_SUPABASE_ANON_KEY"):
        monkeypatch.delenv(name, raising=False)


def make_session(user_id: str = "user-a", email: str = "a@example.com") -> Session:
    return Session(user_id, email, JournalKey(os.urandom(32)))


@pytest.fixture
def session() -> Session:
    return make_session()


@pytest.fixture
def other_session() -> Session:
    return make_session("user-b", "b@example.com")


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "journal.sqlite3")


@pytest_asyncio.fixture
async def rows(db_path) -> SqliteRowStore:
    store = SqliteRowStore(db_path)
    await store.init_db()
    return store


@pytest.fixture
def auth(db_path, rows) -> LocalAuthProvider:
    return LocalAuthProvider(db_path)


@pytest.fixture
def store(rows) -> SyncStore:
    return SyncStore(rows)
