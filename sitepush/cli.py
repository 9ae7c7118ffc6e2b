"""CLI entry point for sitepush.

Commands:
    sitepush run      mirror the watched tree to every target until told to exit
    sitepush example  write an example settings file
    sitepush status   summary of recent transfers from the audit log
    sitepush changes  list or clear the ledger of uploaded files
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from sitepush.config import SITEPUSH_EXAMPLE_SETTINGS, SITEPUSH_LOG_LEVEL, SITEPUSH_SETTINGS
from sitepush.schemas.settings import Settings, generate_example_settings

logger = logging.getLogger("sitepush")

EXIT_USAGE = 1
EXIT_INVALID_SETTINGS = 2
EXIT_MISSING_LOCAL_PATH = 3
EXIT_FATAL = 9


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Push every change in a working tree to its deployment targets."""
    level = logging.DEBUG if verbose else getattr(logging, SITEPUSH_LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # paramiko logs every channel open at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def _load_settings(settings_path: str) -> Settings:
    """Load the settings file or exit with the matching code."""
    if not settings_path or not Path(settings_path).is_file():
        click.echo("Usage: sitepush run SETTINGS.json", err=True)
        if generate_example_settings(SITEPUSH_EXAMPLE_SETTINGS):
            click.echo(f"{SITEPUSH_EXAMPLE_SETTINGS} was generated in the current directory", err=True)
        sys.exit(EXIT_USAGE)

    try:
        return Settings.load(settings_path)
    except (OSError, ValidationError) as exc:
        click.echo(f"Invalid settings file {settings_path}\n{exc}", err=True)
        sys.exit(EXIT_INVALID_SETTINGS)


# ------------------------------------------------------------------
# sitepush run
# ------------------------------------------------------------------


@cli.command()
@click.argument("settings_path", required=False, default=SITEPUSH_SETTINGS)
def run(settings_path: str) -> None:
    """Watch the local tree and push every change to all targets."""
    settings = _load_settings(settings_path)

    if not settings.local_path or not Path(settings.local_path).is_dir():
        click.echo(f"local_path {settings.local_path} does not exist", err=True)
        sys.exit(EXIT_MISSING_LOCAL_PATH)

    code = asyncio.run(_run_async(settings))
    if code:
        sys.exit(code)


async def _run_async(settings: Settings) -> int:
    from sitepush.sync.activity import ActivityLog
    from sitepush.sync.audit import TransferAuditLog
    from sitepush.sync.ledger import ChangeLedger
    from sitepush.sync.scheduler import Scheduler

    activity = ActivityLog(settings.log_path)
    audit_log = TransferAuditLog(settings.audit_log_path) if settings.audit_log_path else None
    ledger = ChangeLedger(settings.change_list_path) if settings.change_list_path else None

    scheduler = None
    try:
        scheduler = Scheduler(settings, activity_log=activity, ledger=ledger, audit_log=audit_log)
        await scheduler.start_all()
        click.echo("Connected.")
        if settings.exit_request_file:
            click.echo(f"Create {settings.exit_request_file} in {settings.local_path} to stop.")
        await scheduler.process()
        return 0
    except Exception as exc:
        activity.write(str(exc), logging.ERROR)
        click.echo(f"Fatal error: {exc}", err=True)
        return EXIT_FATAL
    finally:
        if scheduler is not None:
            await scheduler.stop_all()
        if ledger is not None:
            ledger.close()


# ------------------------------------------------------------------
# sitepush example
# ------------------------------------------------------------------


@cli.command()
@click.argument("path", required=False, default=SITEPUSH_EXAMPLE_SETTINGS)
def example(path: str) -> None:
    """Write an example settings file to PATH."""
    if not generate_example_settings(path):
        click.echo(f"Error: Could not write {path}", err=True)
        sys.exit(1)
    click.echo(f"Example settings written to {path}")


# ------------------------------------------------------------------
# sitepush status
# ------------------------------------------------------------------


@cli.command()
@click.argument("settings_path", required=False, default=SITEPUSH_SETTINGS)
@click.option("--hours", default=24, show_default=True, help="Lookback period in hours.")
def status(settings_path: str, hours: int) -> None:
    """Summarise transfers per target over the recent period."""
    from collections import Counter
    from datetime import UTC, datetime, timedelta

    from sitepush.schemas.sync import TaskStatus
    from sitepush.sync.audit import TransferAuditLog

    settings = _load_settings(settings_path)
    if not settings.audit_log_path:
        click.echo("Error: audit_log_path is not set in the settings file.", err=True)
        sys.exit(1)

    since = datetime.now(UTC) - timedelta(hours=hours)
    entries = TransferAuditLog(settings.audit_log_path).read_entries(since=since)

    succeeded = Counter(e.target_name for e in entries if e.status == TaskStatus.SUCCESS)
    failed = Counter(e.target_name for e in entries if e.status == TaskStatus.FAILED)

    click.echo(f"Transfers in the last {hours}h: {len(entries)}")
    for target in settings.target_list:
        name = target.display_name
        click.echo(f"  {name}: {succeeded[name]} ok, {failed[name]} failed")

    last_failure = next((e for e in reversed(entries) if e.status == TaskStatus.FAILED), None)
    if last_failure is not None:
        click.echo(f"Last failure: {last_failure.source_path} → {last_failure.target_name}")
        for message in last_failure.messages:
            click.echo(f"  {message}")


# ------------------------------------------------------------------
# sitepush changes
# ------------------------------------------------------------------


@cli.command()
@click.argument("settings_path", required=False, default=SITEPUSH_SETTINGS)
@click.option("--clear", is_flag=True, help="Forget all recorded changes.")
def changes(settings_path: str, clear: bool) -> None:
    """List files uploaded since the ledger was last cleared."""
    from sitepush.sync.ledger import ChangeLedger

    settings = _load_settings(settings_path)
    if not settings.change_list_path:
        click.echo("Error: change_list_path is not set in the settings file.", err=True)
        sys.exit(1)

    with ChangeLedger(settings.change_list_path) as ledger:
        if clear:
            removed = ledger.clear()
            click.echo(f"Cleared {removed} change(s).")
            return
        for path in ledger.paths():
            click.echo(path)
