# -*- coding: utf-8 -*-
"""Application logic that composes the backends, crypto and the store.

This module provides the public API used by the command line: config,
backend wiring and the sign-in / unlock / sign-out flows. All side effects
(config I/O, backend calls) are explicit and local.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol
import asyncio
import json
import logging
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from platformdirs import user_config_dir, user_data_dir

from . import db
from .crypto import Session, derive_key, generate_salt
from .errors import (
    AuthenticationFailure,
    ProfileConflict,
    RemoteUnavailable,
    ValidationFailure,
)
from .models import Identity
from .remote import SupabaseClient
from .store import RowStore, SyncStore

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Config management (JSON on disk)
# ---------------------------------------------------------------------

APP_NAME = "sunrise_journal"

DEFAULT_CONFIG: Dict[str, Any] = {
    "backend": "local",
    "db_path": db.DB_PATH,
    "supabase_url": "",
    "supabase_anon_key": "",
    "legacy_path": str(Path(user_data_dir(APP_NAME)) / "local_storage.json"),
    "timezone": "UTC",
    "log_level": "INFO",
}

ENV_OVERRIDES = {
    "SUNRISE_JOURNAL_DB": "db_path",
    "SUNRISE_SUPABASE_URL": "supabase_url",
    "SUNRISE_SUPABASE_ANON_KEY": "supabase_anon_key",
}

def _config_dir() -> Path:
    return Path(user_config_dir(APP_NAME))

def _config_path() -> Path:
    return _config_dir() / "config.json"

def load_config() -> Dict[str, Any]:
    """Load the merged configuration (defaults + file + environment)."""
    path = _config_path()
    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    if not path.exists():
        save_config(DEFAULT_CONFIG)
    else:
        with path.open("r", encoding="utf-8") as f:
            merged.update(json.load(f))
    for env_name, cfg_key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            merged[cfg_key] = value
    return merged

def save_config(cfg: Dict[str, Any]) -> None:
    """Persist *cfg* to the JSON config file."""
    _config_dir().mkdir(parents=True, exist_ok=True)
    with _config_path().open("w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)


# ---------------------------------------------------------------------
# Backend wiring
# ---------------------------------------------------------------------

class AuthProvider(Protocol):
    """Email/password identity provider."""

    async def sign_in(self, email: str, password: str) -> Identity:
        ...

    async def sign_out(self, identity: Identity) -> None:
        ...


async def _noop() -> None:
    return None


@dataclass
class Backend:
    auth: AuthProvider
    rows: RowStore
    close: Callable[[], Awaitable[None]] = _noop


async def open_backend(cfg: Dict[str, Any]) -> Backend:
    """Build the identity provider and row store named by ``cfg['backend']``."""
    kind = cfg.get("backend", "local")
    if kind == "local":
        rows = db.SqliteRowStore(cfg["db_path"])
        await rows.init_db()
        return Backend(auth=db.LocalAuthProvider(cfg["db_path"]), rows=rows)
    if kind == "supabase":
        if not cfg.get("supabase_url") or not cfg.get("supabase_anon_key"):
            raise ValidationFailure("supabase_url and supabase_anon_key must be configured")
        client = SupabaseClient(cfg["supabase_url"], cfg["supabase_anon_key"])
        return Backend(auth=client.auth, rows=client.rows, close=client.close)
    raise ValidationFailure(f"Unknown backend: {kind!r}")


# ---------------------------------------------------------------------
# Salt and session flows
# ---------------------------------------------------------------------

async def get_or_create_salt(rows: RowStore, user_id: str) -> str:
    """Return the user's salt, creating it on first login.

    If another client inserts a profile between our read and our insert,
    the insert fails with ProfileConflict and the stored salt wins.
    """
    salt = await rows.get_profile_salt(user_id)
    if salt:
        return salt

    salt = generate_salt()
    try:
        await rows.insert_profile(user_id, salt)
    except ProfileConflict:
        winner = await rows.get_profile_salt(user_id)
        if not winner:
            raise RemoteUnavailable(f"Profile for {user_id} exists but has no salt")
        log.info("Salt for user %s was created concurrently; using stored salt", user_id)
        return winner
    log.info("Created encryption profile for user %s", user_id)
    return salt


async def open_session(rows: RowStore, identity: Identity, password: str) -> Session:
    """Derive the key for an authenticated identity."""
    if not password:
        raise ValidationFailure("Password required")
    salt = await get_or_create_salt(rows, identity.user_id)
    key = await asyncio.to_thread(derive_key, password, salt)
    return Session(identity.user_id, identity.email, key)


async def sign_in(auth: AuthProvider, rows: RowStore, email: str, password: str) -> Session:
    """Authenticate, then derive the journal key from the same password."""
    if not email:
        raise ValidationFailure("Please enter your email")
    if not password:
        raise ValidationFailure("Password required")
    identity = await auth.sign_in(email, password)
    log.info("Signed in user %s", identity.user_id)
    return await open_session(rows, identity, password)


async def unlock(rows: RowStore, identity: Optional[Identity], password: str) -> Session:
    """Re-derive the key for a still-authenticated identity after a restart."""
    if identity is None:
        raise AuthenticationFailure("No active session")
    return await open_session(rows, identity, password)


async def sign_out(
    auth: AuthProvider,
    session: Session,
    store: Optional[SyncStore] = None,
) -> None:
    """End the identity session; always zero the key and drop the cache."""
    try:
        await auth.sign_out(Identity(user_id=session.user_id, email=session.email))
    finally:
        session.close()
        if store is not None:
            store.clear()
        log.info("Signed out user %s", session.user_id)


# ---------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------

def today_key(tz_name: str = "UTC") -> str:
    """Today's date key (YYYY-MM-DD) in the configured timezone."""
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationFailure(f"Unknown timezone: {tz_name!r}") from exc
    return datetime.now(tz).date().isoformat()
