"""Command line front end for Sunrise Journal."""

import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

import typer

from sunrise_journal import __version__
from sunrise_journal.crypto import Session
from sunrise_journal.db import LocalAuthProvider, init_db
from sunrise_journal.errors import (
    AuthenticationFailure,
    JournalError,
    RemoteUnavailable,
    ValidationFailure,
)
from sunrise_journal.log import configure_logging
from sunrise_journal.logic import load_config, open_backend, sign_in, sign_out, today_key
from sunrise_journal.migration import LegacyStore, MigrationImporter
from sunrise_journal.models import JournalEntry
from sunrise_journal.store import SyncStore

logger = logging.getLogger("sunrise_journal.app")

app = typer.Typer(
    name="sunrise-journal",
    help="Encrypted personal journal.",
    no_args_is_help=True,
)

# Exit codes
ERROR_GENERAL = 1
ERROR_INVALID_ARGS = 2
ERROR_AUTH_FAILURE = 3
ERROR_NETWORK = 4

EMAIL = typer.Option(..., "--email", "-e", envvar="SUNRISE_EMAIL", help="Account email")
PASSWORD = typer.Option(
    ...,
    "--password",
    envvar="SUNRISE_PASSWORD",
    prompt=True,
    hide_input=True,
    help="Account password (prompted when omitted)",
)


def _exit_code(exc: JournalError) -> int:
    if isinstance(exc, ValidationFailure):
        return ERROR_INVALID_ARGS
    if isinstance(exc, AuthenticationFailure):
        return ERROR_AUTH_FAILURE
    if isinstance(exc, RemoteUnavailable):
        return ERROR_NETWORK
    return ERROR_GENERAL


def command(func: Callable) -> Callable:
    """Run an async command and turn JournalError into a message + exit code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.info("command started: %s", func.__name__)
        try:
            return asyncio.run(func(*args, **kwargs))
        except JournalError as exc:
            logger.error("command failed: %s - %s", func.__name__, exc)
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(_exit_code(exc)) from exc

    return wrapper


@asynccontextmanager
async def _journal(email: str, password: str) -> AsyncIterator[Tuple[Dict, Session, SyncStore]]:
    """Sign in, load the cache, and always sign out afterwards."""
    cfg = load_config()
    backend = await open_backend(cfg)
    try:
        session = await sign_in(backend.auth, backend.rows, email, password)
        store = SyncStore(backend.rows)
        try:
            await store.fetch_all_entries(session)
            if not store.last_fetch.complete:
                typer.echo(
                    f"Warning: {len(store.last_fetch.skipped)} day(s) could not be "
                    f"decrypted and are hidden: {', '.join(store.last_fetch.skipped)}",
                    err=True,
                )
            yield cfg, session, store
        finally:
            await sign_out(backend.auth, session, store)
    finally:
        await backend.close()


def _parse_fields(pairs: List[str]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected NAME=VALUE, got {pair!r}", param_hint="--field")
        fields[name.strip()] = value
    return fields


def _preview(entry: JournalEntry, width: int = 60) -> str:
    text = " · ".join(v for v in entry.fields.values() if v) or "No preview available"
    return text if len(text) <= width else text[: width - 1] + "…"


@app.callback()
def main_callback() -> None:
    configure_logging(load_config().get("log_level", "INFO"))


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"sunrise-journal {__version__}")


@app.command()
@command
async def signup(email: str = EMAIL, password: str = PASSWORD) -> None:
    """Create a local account (local backend only)."""
    cfg = load_config()
    if cfg.get("backend") != "local":
        raise ValidationFailure("Sign-up is only available for the local backend")
    await init_db(cfg["db_path"])
    identity = await LocalAuthProvider(cfg["db_path"]).register(email, password)
    typer.echo(f"Account created for {identity.email}")


@app.command()
@command
async def write(
    date_key: Optional[str] = typer.Argument(None, help="Day to file the entry under (YYYY-MM-DD)"),
    field: List[str] = typer.Option([], "--field", "-f", help="Entry field as NAME=VALUE"),
    email: str = EMAIL,
    password: str = PASSWORD,
) -> None:
    """Save a new entry; a day may hold several."""
    fields = _parse_fields(field)
    async with _journal(email, password) as (cfg, session, store):
        day = date_key or today_key(cfg.get("timezone", "UTC"))
        await store.append_entry(day, JournalEntry.create(fields), session)
        count = len(store.entries_for_day(day))
    typer.echo(f"Saved & encrypted. {count} entr{'y' if count == 1 else 'ies'} on {day}.")


@app.command()
@command
async def history(email: str = EMAIL, password: str = PASSWORD) -> None:
    """List entries, newest day first."""
    async with _journal(email, password) as (_cfg, _session, store):
        entries = store.get_entries()
    if not entries:
        typer.echo("No entries yet.")
        return
    for day, day_entries in entries.items():
        for idx, entry in enumerate(day_entries, start=1):
            label = f" (entry {idx})" if len(day_entries) > 1 else ""
            typer.echo(f"{day}{label}  {_preview(entry)}")


@app.command()
@command
async def export(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination file"),
    email: str = EMAIL,
    password: str = PASSWORD,
) -> None:
    """Export decrypted entries to JSON."""
    async with _journal(email, password) as (cfg, _session, store):
        target = output or Path(store.export_filename(today_key(cfg.get("timezone", "UTC"))))
        data = store.export_json()
        count = store.entry_count()
    target.write_text(data, encoding="utf-8")
    typer.echo(f"Exported {count} entries to {target}")


@app.command("import-legacy")
@command
async def import_legacy(
    skip: bool = typer.Option(False, "--skip", help="Discard the legacy entries instead"),
    email: str = EMAIL,
    password: str = PASSWORD,
) -> None:
    """Import entries kept unencrypted on this device."""
    async with _journal(email, password) as (cfg, session, store):
        importer = MigrationImporter(LegacyStore(cfg["legacy_path"]), store)
        scan = importer.has_legacy_entries()
        if not scan.found:
            typer.echo("No legacy entries found.")
            return
        if skip:
            importer.discard_legacy_entries()
            typer.echo(f"Discarded {scan.count} legacy day(s).")
            return
        count = await importer.import_legacy_entries(session)
    typer.echo(f"Successfully imported {count} entries.")


@app.command()
@command
async def wipe(
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation"),
    email: str = EMAIL,
    password: str = PASSWORD,
) -> None:
    """Permanently delete every entry of this account."""
    if not yes and not typer.confirm(
        "This will permanently delete all your journal entries. Are you sure?"
    ):
        raise typer.Abort()
    async with _journal(email, password) as (_cfg, session, store):
        removed = await store.delete_all_entries(session)
    typer.echo(f"All data cleared ({removed} day(s) removed).")


@app.command()
@command
async def status(email: str = EMAIL, password: str = PASSWORD) -> None:
    """Show how many entries are stored and readable."""
    async with _journal(email, password) as (cfg, _session, store):
        report = store.last_fetch
        count = store.entry_count()
        scan = MigrationImporter(LegacyStore(cfg["legacy_path"]), store).has_legacy_entries()
    typer.echo(f"Days stored: {report.total}")
    typer.echo(f"Days readable: {report.decrypted}")
    typer.echo(f"Entries: {count}")
    if scan.found:
        typer.echo(f"Legacy entries on this device: {scan.count} day(s); run import-legacy")


def main() -> None:
    """Run the command line application."""
    app()


if __name__ == "__main__":
    main()
