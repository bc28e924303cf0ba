"""SubTracker CLI — local session management and the API server.

Usage:
    subtracker status                          # Who is signed in, last sync
    subtracker signup me@example.com "Ann Lee" # Create a local account
    subtracker signin me@example.com           # Switch to a local account
    subtracker signout                         # Clear the session pointer
    subtracker profile --name "Ann B. Lee"     # Update profile fields
    subtracker prefs --dark-mode --currency EUR
    subtracker sync                            # Gather buckets and push them
    subtracker serve --port 8000               # Run the HTTP API
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click

from subtracker import __version__
from subtracker.client.session import ClientSessionManager
from subtracker.client.store import JsonFileStore
from subtracker.client.sync import HttpSyncTarget, LoggingSyncTarget, SyncTarget
from subtracker.config import settings
from subtracker.errors import SubTrackerError, ValidationError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop — normal CLI invocation
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _sync_target() -> SyncTarget:
    if settings.sync_url:
        return HttpSyncTarget(settings.sync_url)
    return LoggingSyncTarget()


def _manager(store_path: Optional[str]) -> ClientSessionManager:
    return ClientSessionManager(
        JsonFileStore(store_path or settings.local_store_path),
        sync_target=_sync_target(),
        navigate=lambda path: click.echo(
            f"Signed out. Sign in again with `subtracker signin` ({path})."
        ),
    )


def _fail(e: SubTrackerError):
    if isinstance(e, ValidationError):
        click.secho("Validation failed:", fg="red", err=True)
        for field, messages in e.fields.items():
            for message in messages:
                click.secho(f"  {field}: {message}", fg="red", err=True)
    else:
        click.secho(f"Error: {e.message}", fg="red", err=True)
    sys.exit(1)


def _print_profile(mgr: ClientSessionManager):
    p = mgr.profile
    if p is None:
        click.echo("Not signed in.")
        return
    prefs = p.preferences
    click.secho(f"{p.name} <{p.email}>", bold=True)
    click.echo(f"  id:            {p.id}")
    click.echo(f"  plan:          {p.subscription.plan} (valid until {p.subscription.valid_until:%Y-%m-%d})")
    click.echo(f"  currency:      {prefs.currency}")
    click.echo(f"  timezone:      {prefs.timezone}")
    click.echo(f"  month starts:  day {prefs.fiscal_month_start_day}")
    click.echo(f"  dark mode:     {'on' if prefs.dark_mode else 'off'}")
    click.echo(f"  retention:     {prefs.data_retention_days} days")


store_option = click.option(
    "--store", "store_path", envvar="SUBTRACKER_LOCAL_STORE_PATH",
    help="Path of the local JSON store",
)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="subtracker")
def main():
    """SubTracker — local session management for the finance dashboard."""


@main.command()
@store_option
def status(store_path: Optional[str]):
    """Show the active profile (creates the demo profile on first run)."""

    async def _impl():
        mgr = _manager(store_path)
        await mgr.bootstrap()
        _print_profile(mgr)
        last = mgr.last_synced_at()
        click.echo(f"  last sync:     {last.isoformat() if last else 'never'}")

    try:
        _run(_impl())
    except SubTrackerError as e:
        _fail(e)


@main.command()
@click.argument("email")
@click.argument("name")
@click.password_option()
@store_option
def signup(email: str, name: str, password: str, store_path: Optional[str]):
    """Create a local account and sign in to it."""

    async def _impl():
        mgr = _manager(store_path)
        await mgr.bootstrap()
        await mgr.sign_up(email, password, name)
        click.secho(f"Welcome, {mgr.profile.name}!", fg="green")
        _print_profile(mgr)

    try:
        _run(_impl())
    except SubTrackerError as e:
        _fail(e)


@main.command()
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True)
@store_option
def signin(email: str, password: str, store_path: Optional[str]):
    """Sign in to a local account."""

    async def _impl():
        mgr = _manager(store_path)
        await mgr.bootstrap()
        await mgr.sign_in(email, password)
        click.secho(f"Signed in as {mgr.profile.email}", fg="green")

    try:
        _run(_impl())
    except SubTrackerError as e:
        _fail(e)


@main.command()
@store_option
def signout(store_path: Optional[str]):
    """Clear the session pointer. The profile stays on disk."""

    async def _impl():
        mgr = _manager(store_path)
        await mgr.bootstrap()
        await mgr.sign_out()

    try:
        _run(_impl())
    except SubTrackerError as e:
        _fail(e)


@main.command()
@click.option("--name", help="Display name")
@store_option
def profile(name: Optional[str], store_path: Optional[str]):
    """Update profile fields."""
    changes = {k: v for k, v in {"name": name}.items() if v is not None}

    async def _impl():
        mgr = _manager(store_path)
        await mgr.bootstrap()
        if changes:
            await mgr.update_profile(changes)
        _print_profile(mgr)

    try:
        _run(_impl())
    except SubTrackerError as e:
        _fail(e)


@main.command()
@click.option("--currency")
@click.option("--timezone")
@click.option("--month-start", type=int, help="Fiscal month start day (1-28)")
@click.option("--dark-mode/--light-mode", default=None)
@click.option("--retention-days", type=int)
@store_option
def prefs(currency, timezone, month_start, dark_mode, retention_days, store_path):
    """Update preferences. Options not given are left unchanged."""
    changes = {
        k: v
        for k, v in {
            "currency": currency,
            "timezone": timezone,
            "fiscal_month_start_day": month_start,
            "dark_mode": dark_mode,
            "data_retention_days": retention_days,
        }.items()
        if v is not None
    }

    async def _impl():
        mgr = _manager(store_path)
        await mgr.bootstrap()
        if changes:
            await mgr.update_preferences(changes)
        _print_profile(mgr)

    try:
        _run(_impl())
    except SubTrackerError as e:
        _fail(e)


@main.command()
@store_option
def sync(store_path: Optional[str]):
    """Gather local data buckets and push them to the sync target."""

    async def _impl():
        mgr = _manager(store_path)
        await mgr.bootstrap()
        result = await mgr.sync_data()
        if result.delivered:
            click.secho("Sync delivered.", fg="green")
        else:
            click.secho(f"Sync recorded locally, not delivered: {result.error}", fg="yellow")

    try:
        _run(_impl())
    except SubTrackerError as e:
        _fail(e)


@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", type=int, default=None, help="Port (default from settings)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "subtracker.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


if __name__ == "__main__":
    main()
