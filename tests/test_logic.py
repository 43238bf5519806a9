"""Tests for config, backend wiring and the sign-in / sign-out flows."""

from __future__ import annotations

import json
import re

import pytest

from sunrise_journal import logic
from sunrise_journal.crypto import encrypt
from sunrise_journal.errors import (
    AuthenticationFailure,
    ProfileConflict,
    ValidationFailure,
)
from sunrise_journal.models import Identity, JournalEntry
from sunrise_journal.store import SyncStore


class RacingRows:
    """Profile store where another client wins the insert race."""

    def __init__(self, winner: str) -> None:
        self.winner = winner
        self.reads = 0
        self.inserted = []

    async def get_profile_salt(self, user_id):
        self.reads += 1
        return None if self.reads == 1 else self.winner

    async def insert_profile(self, user_id, salt):
        self.inserted.append(salt)
        raise ProfileConflict("duplicate key")


class RecordingAuth:
    def __init__(self, fail_sign_out: bool = False) -> None:
        self.calls = []
        self.fail_sign_out = fail_sign_out

    async def sign_in(self, email, password):
        self.calls.append(("sign_in", email))
        return Identity(user_id="user-a", email=email)

    async def sign_out(self, identity):
        self.calls.append(("sign_out", identity.user_id))
        if self.fail_sign_out:
            raise RuntimeError("network dropped")


# ---------------------------------------------------------------------------
# Salt
# ---------------------------------------------------------------------------


class TestSalt:
    @pytest.mark.asyncio
    async def test_created_once_then_reused(self, rows):
        first = await logic.get_or_create_salt(rows, "user-a")
        second = await logic.get_or_create_salt(rows, "user-a")
        assert first == second
        assert await rows.get_profile_salt("user-a") == first

    @pytest.mark.asyncio
    async def test_concurrent_creation_uses_stored_salt(self):
        racing = RacingRows(winner="d2lubmluZ3NhbHQxMjM0NQ==")
        salt = await logic.get_or_create_salt(racing, "user-a")
        assert salt == "d2lubmluZ3NhbHQxMjM0NQ=="
        assert len(racing.inserted) == 1
        assert racing.inserted[0] != salt


# ---------------------------------------------------------------------------
# Sign in / unlock / sign out
# ---------------------------------------------------------------------------


class TestSignIn:
    @pytest.mark.asyncio
    async def test_two_sign_ins_derive_the_same_key(self, rows, auth):
        await auth.register("ana@example.com", "correct horse")

        first = await logic.sign_in(auth, rows, "ana@example.com", "correct horse")
        second = await logic.sign_in(auth, rows, "ana@example.com", "correct horse")

        assert first.user_id == second.user_id
        assert first.key == second.key

        store = SyncStore(rows)
        await store.append_entry("2024-05-01", JournalEntry.create({"feeling": "ok"}), first)
        cache = await store.fetch_all_entries(second)
        assert cache["2024-05-01"][0].fields == {"feeling": "ok"}

    @pytest.mark.asyncio
    async def test_wrong_password(self, rows, auth):
        await auth.register("ana@example.com", "correct horse")
        with pytest.raises(AuthenticationFailure):
            await logic.sign_in(auth, rows, "ana@example.com", "battery staple")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,password", [("", "pw"), ("ana@example.com", "")])
    async def test_missing_credentials_never_reach_provider(self, rows, email, password):
        recording = RecordingAuth()
        with pytest.raises(ValidationFailure):
            await logic.sign_in(recording, rows, email, password)
        assert recording.calls == []

    @pytest.mark.asyncio
    async def test_unlock_without_identity(self, rows):
        with pytest.raises(AuthenticationFailure):
            await logic.unlock(rows, None, "pw")

    @pytest.mark.asyncio
    async def test_unlock_rederives_the_key(self, rows, auth):
        identity = await auth.register("ana@example.com", "correct horse")
        session = await logic.sign_in(auth, rows, "ana@example.com", "correct horse")
        unlocked = await logic.unlock(rows, identity, "correct horse")
        assert unlocked.key == session.key

    @pytest.mark.asyncio
    async def test_sign_out_closes_session_and_clears_store(self, store, session):
        await store.append_entry("2024-05-01", JournalEntry.create({"feeling": "x"}), session)
        await store.fetch_all_entries(session)
        key = session.key
        recording = RecordingAuth()

        await logic.sign_out(recording, session, store)

        assert recording.calls == [("sign_out", "user-a")]
        assert session.closed
        assert key.destroyed
        assert store.get_entries() == {}
        with pytest.raises(ValidationFailure):
            encrypt(b"x", key)

    @pytest.mark.asyncio
    async def test_sign_out_zeroes_key_even_if_provider_fails(self, store, session):
        await store.fetch_all_entries(session)
        with pytest.raises(RuntimeError):
            await logic.sign_out(RecordingAuth(fail_sign_out=True), session, store)
        assert session.closed
        assert store.owner is None


# ---------------------------------------------------------------------------
# Config / wiring / dates
# ---------------------------------------------------------------------------


class TestConfig:
    def test_first_load_writes_defaults(self, tmp_path):
        cfg = logic.load_config()
        assert cfg["backend"] == "local"
        written = json.loads((tmp_path / "config" / "config.json").read_text(encoding="utf-8"))
        assert written["timezone"] == "UTC"

    def test_file_values_and_env_overrides(self, tmp_path, monkeypatch):
        logic.save_config({"timezone": "Asia/Tokyo", "db_path": "from-file.db"})
        monkeypatch.setenv("SUNRISE_JOURNAL_DB", str(tmp_path / "from-env.db"))

        cfg = logic.load_config()

        assert cfg["timezone"] == "Asia/Tokyo"
        assert cfg["db_path"] == str(tmp_path / "from-env.db")
        assert cfg["log_level"] == "INFO"


class TestBackend:
    @pytest.mark.asyncio
    async def test_local_backend(self, db_path):
        backend = await logic.open_backend({"backend": "local", "db_path": db_path})
        assert await backend.rows.select_entries("nobody") == []
        await backend.close()

    @pytest.mark.asyncio
    async def test_supabase_requires_url_and_key(self):
        with pytest.raises(ValidationFailure):
            await logic.open_backend({"backend": "supabase", "supabase_url": ""})

    @pytest.mark.asyncio
    async def test_supabase_backend(self):
        backend = await logic.open_backend(
            {
                "backend": "supabase",
                "supabase_url": "https://example.supabase.co",
                "supabase_anon_key": "anon",
            }
        )
        assert backend.rows.client is backend.auth.client
        await backend.close()

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        with pytest.raises(ValidationFailure):
            await logic.open_backend({"backend": "carrier-pigeon"})


class TestTodayKey:
    def test_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", logic.today_key("Pacific/Auckland"))

    def test_unknown_timezone(self):
        with pytest.raises(ValidationFailure):
            logic.today_key("Mars/Olympus_Mons")
