# -*- coding: utf-8 -*-
"""Sunrise Journal package.

Modules:
    crypto:    Key derivation, session key container, AES-GCM entry codec.
    models:    Plain data types (entries, encrypted rows, identities).
    db:        SQLite row store + local identity provider (aiosqlite).
    remote:    Hosted row store + identity provider over httpx.
    store:     SyncStore, the decrypted cache over a row store.
    migration: Import of legacy unencrypted entries.
    logic:     Config, backend wiring, sign-in / unlock / sign-out.
    log:       File logging setup for the command line.
    app:       Typer command line.
"""

__version__ = "0.1.0"

__all__ = ["crypto", "models", "db", "remote", "store", "migration", "logic", "log", "app"]
