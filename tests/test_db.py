"""Tests for the SQLite row store and the local identity provider."""

from __future__ import annotations

import pytest

from sunrise_journal.db import LocalAuthProvider, SqliteRowStore
from sunrise_journal.errors import (
    AuthenticationFailure,
    ProfileConflict,
    RemoteUnavailable,
    ValidationFailure,
)
from sunrise_journal.models import EncryptedRecord


def _record(user_id: str, date_key: str, data: str = "ct", iv: str = "iv") -> EncryptedRecord:
    return EncryptedRecord(
        user_id=user_id,
        date_key=date_key,
        ciphertext=data,
        iv=iv,
        updated_at="2024-01-01T00:00:00.000Z",
    )


class TestProfiles:
    @pytest.mark.asyncio
    async def test_missing_profile_is_none(self, rows):
        assert await rows.get_profile_salt("nobody") is None

    @pytest.mark.asyncio
    async def test_insert_then_read(self, rows):
        await rows.insert_profile("u1", "c2FsdA==")
        assert await rows.get_profile_salt("u1") == "c2FsdA=="

    @pytest.mark.asyncio
    async def test_second_insert_conflicts_and_keeps_first_salt(self, rows):
        await rows.insert_profile("u1", "first")
        with pytest.raises(ProfileConflict):
            await rows.insert_profile("u1", "second")
        assert await rows.get_profile_salt("u1") == "first"


class TestEntries:
    @pytest.mark.asyncio
    async def test_select_orders_newest_first(self, rows):
        for day in ("2024-01-02", "2024-03-09", "2023-12-31"):
            await rows.upsert_entry(_record("u1", day))
        got = [r.date_key for r in await rows.select_entries("u1")]
        assert got == ["2024-03-09", "2024-01-02", "2023-12-31"]

    @pytest.mark.asyncio
    async def test_upsert_replaces_row_for_same_day(self, rows):
        await rows.upsert_entry(_record("u1", "2024-01-02", data="old"))
        await rows.upsert_entry(_record("u1", "2024-01-02", data="new"))
        got = await rows.select_entries("u1")
        assert len(got) == 1
        assert got[0].ciphertext == "new"

    @pytest.mark.asyncio
    async def test_select_entry(self, rows):
        await rows.upsert_entry(_record("u1", "2024-01-02", data="x"))
        assert (await rows.select_entry("u1", "2024-01-02")).ciphertext == "x"
        assert await rows.select_entry("u1", "2024-01-03") is None
        assert await rows.select_entry("u2", "2024-01-02") is None

    @pytest.mark.asyncio
    async def test_delete_only_touches_one_user(self, rows):
        await rows.upsert_entry(_record("u1", "2024-01-01"))
        await rows.upsert_entry(_record("u1", "2024-01-02"))
        await rows.upsert_entry(_record("u2", "2024-01-01"))

        assert await rows.delete_entries("u1") == 2
        assert await rows.select_entries("u1") == []
        assert len(await rows.select_entries("u2")) == 1

    @pytest.mark.asyncio
    async def test_unusable_database_is_remote_unavailable(self, tmp_path):
        broken = SqliteRowStore(str(tmp_path))  # a directory, not a file
        with pytest.raises(RemoteUnavailable):
            await broken.select_entries("u1")


class TestLocalAuthProvider:
    @pytest.mark.asyncio
    async def test_register_and_sign_in(self, auth):
        created = await auth.register("Ana@Example.com ", "hunter22")
        identity = await auth.sign_in("ana@example.com", "hunter22")
        assert identity.user_id == created.user_id
        assert identity.email == "ana@example.com"

    @pytest.mark.asyncio
    async def test_wrong_password(self, auth):
        await auth.register("ana@example.com", "hunter22")
        with pytest.raises(AuthenticationFailure):
            await auth.sign_in("ana@example.com", "hunter23")

    @pytest.mark.asyncio
    async def test_unknown_email(self, auth):
        with pytest.raises(AuthenticationFailure):
            await auth.sign_in("ghost@example.com", "whatever")

    @pytest.mark.asyncio
    async def test_duplicate_email(self, auth):
        await auth.register("ana@example.com", "hunter22")
        with pytest.raises(ValidationFailure):
            await auth.register("ana@example.com", "other")

    @pytest.mark.asyncio
    async def test_register_requires_password(self, auth):
        with pytest.raises(ValidationFailure):
            await auth.register("ana@example.com", "")
