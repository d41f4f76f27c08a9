"""
CLI interface for Quota Refill.

The scheduler entry point: `quota-refill run` performs one daily pass.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from quota_refill.audit.ingest import build_audit_sink
from quota_refill.config.loader import (
    RefillConfig,
    default_refill_config,
    load_refill_config,
    require_audit_token
)
from quota_refill.core.dates import classify_day
from quota_refill.core.reconcile import RefillRunResult, run_daily_refill
from quota_refill.core.selection import select_due_keys
from quota_refill.errors import StoreQueryError
from quota_refill.logger import set_level
from quota_refill.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

# Audit-only failures get their own code: the quota mutation already happened
EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_AUDIT_INCOMPLETE = 2

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML configuration file"
)
DATE_OPTION = typer.Option(
    None,
    "--date",
    "-d",
    formats=["%Y-%m-%d"],
    help="Run date (YYYY-MM-DD), defaults to now in UTC"
)


def _load_config(path: Optional[str]) -> RefillConfig:
    if path is None:
        return default_refill_config()
    return load_refill_config(path)


def _result_exit_code(result: RefillRunResult) -> int:
    if result.refill_failures:
        return EXIT_CODE_FAIL
    if result.audit_failures:
        return EXIT_CODE_AUDIT_INCOMPLETE
    return EXIT_CODE_OK


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Quota Refill CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Quota Refill - Use --help to see available commands")


@app.command()
def init(config: Optional[str] = CONFIG_OPTION):
    """Create the key and audit tables."""
    try:
        settings = _load_config(config)
        initialize_schema(settings.database.path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def run(
    config: Optional[str] = CONFIG_OPTION,
    date: Optional[datetime] = DATE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every refill"
    )
):
    """
    Refill every key due on the run date.

    Exits 1 if due keys could not be listed or any refill failed, and 2 if
    every refill succeeded but some audit events were not written.
    """
    if verbose:
        set_level(logging.DEBUG)

    try:
        settings = _load_config(config)
        token = require_audit_token(settings)
        sink = build_audit_sink(settings.audit, settings.database.path, token)
    except Exception as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    reference = date or datetime.now(timezone.utc)
    repository = get_repository(settings.database.path, settings.database.batch_size)

    try:
        result = run_daily_refill(
            reference=reference,
            repository=repository,
            audit_sink=sink,
            actor_id=settings.audit.actor_id,
            location=settings.audit.location
        )
    except StoreQueryError as e:
        console.print(f"[red]Refill run failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_run_result(result)
    sys.exit(_result_exit_code(result))


@app.command()
def due(
    config: Optional[str] = CONFIG_OPTION,
    date: Optional[datetime] = DATE_OPTION
):
    """List keys that would be refilled on the run date, without changing them."""
    try:
        settings = _load_config(config)
        classification = classify_day(date or datetime.now(timezone.utc))
        repository = get_repository(settings.database.path, settings.database.batch_size)
        keys = select_due_keys(repository, classification)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    label = "end of month" if classification.is_end_of_month else "normal day"
    console.print(
        f"\n[bold]Day {classification.today} of {classification.last_day_of_month}[/bold] ({label})"
    )
    if not keys:
        console.print("[dim]No keys due for refill.[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table("Key", "Workspace", "Remaining", "Refill to", "Refill day")
    for key in keys:
        table.add_row(
            key.id,
            key.workspace_id,
            str(key.remaining),
            str(key.refill_amount),
            str(key.refill_day) if key.refill_day is not None else "daily"
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command("keys")
def list_keys(
    config: Optional[str] = CONFIG_OPTION,
    show_all: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Include deleted keys"
    )
):
    """List keys and their refill policy."""
    try:
        settings = _load_config(config)
        repository = get_repository(settings.database.path, settings.database.batch_size)
        keys = repository.list_keys(include_deleted=show_all)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table("Key", "Workspace", "Remaining", "Refill to", "Refill day", "Last refill", "Status")
    for key in keys:
        if key.is_deleted:
            status = "deleted"
        elif key.needs_refill:
            status = "below refill amount"
        else:
            status = "ok"
        table.add_row(
            key.id,
            key.workspace_id,
            str(key.remaining),
            str(key.refill_amount) if key.refill_amount is not None else "-",
            str(key.refill_day) if key.refill_day is not None else "-",
            key.last_refill_at.isoformat() if key.last_refill_at else "never",
            status
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


def _display_run_result(result: RefillRunResult):
    """Print a summary of the run."""
    classification = result.classification
    console.print("\n[bold]Daily Refill Result[/bold]")
    console.print("-" * 40)
    console.print(f"Day: {classification.today} of {classification.last_day_of_month}")
    console.print(f"Due keys: {result.selected_count}")
    console.print(f"Refilled: {len(result.refilled_key_ids)}")

    for key_id in result.refilled_key_ids:
        console.print(f"  [green]✓[/] {key_id}")

    for failure in result.refill_failures:
        console.print(f"  [red]✗ refill failed[/] {failure.key_id}: {failure.message}")

    for failure in result.audit_failures:
        console.print(f"  [yellow]! audit log missing[/] {failure.key_id}: {failure.message}")


if __name__ == "__main__":
    app()
