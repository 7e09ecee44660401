"""Database management commands."""

import logging

import click
from rich.console import Console
from rich.table import Table

from kpiwatch.cli.error_handler import handle_cli_errors
from kpiwatch.config import config
from kpiwatch.core.alerts.dispatcher import NotificationDispatcher
from kpiwatch.core.alerts.store import AlertStore
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.database import init_db

logger = logging.getLogger(__name__)


@click.group()
def db() -> None:
    """Database management commands.

    Initialize the state database and apply retention policies.
    """
    pass


@db.command()
@click.pass_context
@handle_cli_errors
def init(ctx: click.Context) -> None:
    """
    Initialize the local database.

    Creates the SQLite tables for entities, snapshots, schedules,
    alerts and notifications. Safe to run more than once.

    \b
    Example:
        kpiwatch db init
    """
    console: Console = ctx.obj["console"]

    config.ensure_directories()

    with console.status("[bold blue]Initializing database...[/bold blue]"):
        init_db()

    console.print("[green]Database initialized successfully![/green]")
    console.print(f"[dim]Database path: {config.db_path}[/dim]")


@db.command()
@click.option("--snapshot-days", type=int, default=None, help="Snapshot retention (default: config)")
@click.option("--history-days", type=int, default=None, help="Alert history retention (default: config)")
@click.option("--fire-log-days", type=int, default=None, help="Fire log retention (default: config)")
@click.pass_context
@handle_cli_errors
def cleanup(
    ctx: click.Context,
    snapshot_days: int,
    history_days: int,
    fire_log_days: int,
) -> None:
    """
    Delete snapshots, alert history and fire log entries past retention.

    \b
    Examples:
        kpiwatch db cleanup
        kpiwatch db cleanup --snapshot-days 30
    """
    console: Console = ctx.obj["console"]

    init_db()
    with console.status("[bold blue]Applying retention...[/bold blue]"):
        snapshots = SnapshotStore().cleanup_old(snapshot_days)
        history = AlertStore().cleanup_old_history(history_days)
        fire_log = NotificationDispatcher(channels={}).cleanup_old_logs(fire_log_days)

    table = Table(title="Retention Cleanup")
    table.add_column("Table", style="cyan")
    table.add_column("Retention", justify="right")
    table.add_column("Deleted", justify="right", style="bold")
    table.add_row("snapshots", f"{snapshot_days or config.snapshot_retention_days}d", str(snapshots))
    table.add_row("alert_history", f"{history_days or config.alert_history_retention_days}d", str(history))
    table.add_row("alert_fire_log", f"{fire_log_days or config.fire_log_retention_days}d", str(fire_log))
    console.print(table)

    logger.info(f"Cleanup removed {snapshots + history + fire_log} rows")
