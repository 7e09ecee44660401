"""Snapshot schedule and history commands."""

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from kpiwatch.cli.error_handler import handle_cli_errors
from kpiwatch.cli.formatting import MISSING, format_metric, format_timestamp, trend_text
from kpiwatch.core.constants import DEFAULT_SNAPSHOT_INTERVAL, REPORT_SOURCES, SOURCE_PRIMARY
from kpiwatch.core.exceptions import EntityNotFoundError
from kpiwatch.core.snapshots.scheduler import SnapshotScheduler
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.database import entity_exists, init_db


@click.group()
def snapshots() -> None:
    """
    Capture and inspect report metric snapshots.

    \b
    Examples:
        kpiwatch snapshots register 1 42 --interval 3600
        kpiwatch snapshots run                # cron entry point
        kpiwatch snapshots history 1 42
    """
    pass


@snapshots.command("register")
@click.argument("entity_id", type=int)
@click.argument("report_id")
@click.option("--source", type=click.Choice(list(REPORT_SOURCES)), default=SOURCE_PRIMARY, help="Report source")
@click.option("--interval", type=int, default=DEFAULT_SNAPSHOT_INTERVAL, help="Seconds between captures (300-604800)")
@click.option("--capture/--no-capture", default=True, help="Capture a first value now")
@click.pass_context
@handle_cli_errors
def snapshots_register(
    ctx: click.Context, entity_id: int, report_id: str, source: str, interval: int, capture: bool
) -> None:
    """Schedule periodic snapshots for a report of an entity."""
    console: Console = ctx.obj["console"]

    init_db()
    if not entity_exists(entity_id):
        raise EntityNotFoundError(entity_id)

    scheduler = SnapshotScheduler()
    value = 0.0
    row_count = None

    if capture:
        with console.status(f"[bold blue]Capturing {report_id}...[/bold blue]"):
            result = scheduler.metric_source.fetch_metric(report_id, source)
        value, row_count = result.value, result.row_count

    created = scheduler.register_if_absent(
        entity_id, report_id, source, interval, value=value, row_count=row_count
    )
    if created is None:
        schedule = scheduler.register_pair(entity_id, report_id, source, interval, initial_value=value)
        if capture:
            scheduler.store.save_value(
                entity_id, report_id, value, source=source, row_count=row_count, source_kind="manual"
            )
        console.print(f"[green]Updated schedule {schedule.id}[/green]")
    else:
        schedule = created
        console.print(f"[green]Registered schedule {schedule.id}[/green]")

    console.print(f"  Report: {report_id} ({source})")
    console.print(f"  Interval: {schedule.interval_seconds}s")
    console.print(f"  Next capture: {format_timestamp(schedule.next_due_at)}")
    if capture:
        console.print(f"  Current value: {format_metric(value)}")


@snapshots.command("record")
@click.argument("entity_id", type=int)
@click.argument("report_id")
@click.argument("value", type=float)
@click.option("--source", type=click.Choice(list(REPORT_SOURCES)), default=SOURCE_PRIMARY, help="Report source")
@click.option("--min-interval", type=int, default=0, help="Skip if the last snapshot is newer than this (seconds)")
@click.pass_context
@handle_cli_errors
def snapshots_record(
    ctx: click.Context, entity_id: int, report_id: str, value: float, source: str, min_interval: int
) -> None:
    """Store a manually supplied value for a report."""
    console: Console = ctx.obj["console"]

    init_db()
    if not entity_exists(entity_id):
        raise EntityNotFoundError(entity_id)

    saved = SnapshotStore().save_value(
        entity_id,
        report_id,
        value,
        source=source,
        source_kind="manual",
        min_interval_seconds=min_interval,
    )
    if saved is None:
        console.print("[yellow]Skipped: a recent snapshot already exists[/yellow]")
        return
    console.print(f"[green]Recorded {format_metric(value)} for report {report_id}[/green]")


@snapshots.command("list")
@click.option("--entity", "entity_id", type=int, default=None, help="Filter by entity")
@click.option("--active-only", is_flag=True, help="Show only active schedules")
@click.pass_context
@handle_cli_errors
def snapshots_list(ctx: click.Context, entity_id: int, active_only: bool) -> None:
    """List snapshot schedules."""
    console: Console = ctx.obj["console"]

    init_db()
    schedules = SnapshotScheduler(mirror_remote=False).list_schedules(entity_id=entity_id, active_only=active_only)
    if not schedules:
        console.print("[yellow]No snapshot schedules[/yellow]")
        console.print("[dim]Tip: Run `kpiwatch snapshots register ENTITY_ID REPORT_ID`[/dim]")
        return

    table = Table(title="Snapshot Schedules")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Entity", justify="right")
    table.add_column("Report", style="cyan")
    table.add_column("Source")
    table.add_column("Interval", justify="right")
    table.add_column("Last Value", justify="right")
    table.add_column("Last Capture")
    table.add_column("Next Due")
    table.add_column("Active", justify="center")

    for schedule in schedules:
        table.add_row(
            str(schedule.id),
            str(schedule.entity_id),
            schedule.report_id,
            schedule.report_source,
            f"{schedule.interval_seconds}s",
            format_metric(schedule.last_value),
            format_timestamp(schedule.last_snapshot_at),
            format_timestamp(schedule.next_due_at),
            Text("yes", style="green") if schedule.is_active else Text("no", style="dim"),
        )

    console.print(table)


@snapshots.command("due")
@click.option("--limit", type=int, default=None, help="Max schedules to show (default: config)")
@click.pass_context
@handle_cli_errors
def snapshots_due(ctx: click.Context, limit: int) -> None:
    """List schedules that the next run would capture."""
    console: Console = ctx.obj["console"]

    init_db()
    due = SnapshotScheduler(mirror_remote=False).get_due_schedules(limit=limit)
    if not due:
        console.print("[dim]No snapshots due[/dim]")
        return

    for schedule in due:
        console.print(
            f"  [cyan]{schedule.report_id}[/cyan] entity {schedule.entity_id} "
            f"(due {format_timestamp(schedule.next_due_at)})"
        )
    console.print(f"[dim]{len(due)} schedule(s) due[/dim]")


@snapshots.command("run")
@click.option("--limit", type=int, default=None, help="Max schedules per run (default: config)")
@click.pass_context
@handle_cli_errors
def snapshots_run(ctx: click.Context, limit: int) -> None:
    """
    Capture every due snapshot.

    Failed captures keep their due time and are retried on the next run.
    Intended to be called from cron.
    """
    console: Console = ctx.obj["console"]

    init_db()
    with console.status("[bold blue]Capturing due snapshots...[/bold blue]"):
        summary = SnapshotScheduler().run_due(limit=limit)

    if summary.total == 0:
        console.print("[dim]No snapshots due[/dim]")
        return

    console.print(f"[green]{summary.succeeded} snapshot(s) captured[/green]")
    if summary.failed:
        ids = ", ".join(str(i) for i in summary.failed_schedule_ids)
        console.print(f"[yellow]{summary.failed} failed (schedules {ids}); they will be retried[/yellow]")


@snapshots.command("history")
@click.argument("entity_id", type=int)
@click.argument("report_id")
@click.option("--limit", type=int, default=10, help="Number of snapshots to show")
@click.pass_context
@handle_cli_errors
def snapshots_history(ctx: click.Context, entity_id: int, report_id: str, limit: int) -> None:
    """Show stored snapshots, trend and statistics for a report."""
    console: Console = ctx.obj["console"]

    init_db()
    store = SnapshotStore()
    history = store.get_history(entity_id, report_id, limit=limit)
    if not history:
        console.print(f"[yellow]No snapshots for report {report_id}[/yellow]")
        return

    table = Table(title=f"Snapshots: {report_id}")
    table.add_column("Captured")
    table.add_column("Value", justify="right", style="bold")
    table.add_column("Rows", justify="right")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Kind", style="dim")

    for snapshot in history:
        table.add_row(
            format_timestamp(snapshot.captured_at),
            format_metric(snapshot.value),
            str(snapshot.row_count) if snapshot.row_count is not None else MISSING,
            str(snapshot.execution_time_ms) if snapshot.execution_time_ms is not None else MISSING,
            snapshot.source_kind,
        )
    console.print(table)

    latest = history[-1]
    previous = store.get_previous_value(entity_id, report_id)
    stats = store.get_statistics(entity_id, report_id)

    line = Text(f"Latest {format_metric(latest.value)}  ")
    if previous is not None:
        change = latest.value - previous
        percent = (change / abs(previous) * 100) if previous else 0.0
        direction = "up" if change > 0 else "down" if change < 0 else "neutral"
        line.append_text(trend_text(direction, abs(percent)))
    console.print(line)
    console.print(
        f"[dim]{stats.count} stored | min {format_metric(stats.min)} | "
        f"max {format_metric(stats.max)} | avg {format_metric(stats.avg)}[/dim]"
    )
