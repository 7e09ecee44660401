"""Dashboard entity commands."""

import click
from rich.console import Console
from rich.table import Table

from kpiwatch.cli.error_handler import handle_cli_errors
from kpiwatch.cli.formatting import MISSING, format_timestamp, status_text
from kpiwatch.config import config
from kpiwatch.core.alerts.reconciler import AlertReconciler
from kpiwatch.core.alerts.store import AlertStore
from kpiwatch.core.exceptions import EntityNotFoundError
from kpiwatch.core.snapshots.scheduler import SnapshotScheduler
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.database import create_entity, delete_entity, get_entity, init_db, list_entities


@click.group()
def entity() -> None:
    """
    Manage dashboard entities.

    An entity owns the reports that are snapshotted and the alerts
    defined on them.

    \b
    Examples:
        kpiwatch entity add "Sales dashboard" --url https://example.com/d/1
        kpiwatch entity list
        kpiwatch entity remove 1
    """
    pass


@entity.command("add")
@click.argument("name")
@click.option("--url", "page_url", default=None, help="Dashboard page linked from notifications")
@click.pass_context
@handle_cli_errors
def entity_add(ctx: click.Context, name: str, page_url: str) -> None:
    """Register a dashboard entity."""
    console: Console = ctx.obj["console"]

    init_db()
    created = create_entity(name.strip(), page_url=page_url)

    console.print(f"[green]Created entity {created.id}: {created.name}[/green]")
    console.print(f"[dim]Tip: Run `kpiwatch snapshots register {created.id} REPORT_ID` to start capturing[/dim]")


@entity.command("list")
@click.pass_context
@handle_cli_errors
def entity_list(ctx: click.Context) -> None:
    """List entities with their alert status."""
    console: Console = ctx.obj["console"]

    init_db()
    entities = list_entities()
    if not entities:
        console.print("[yellow]No entities registered[/yellow]")
        console.print('[dim]Tip: Run `kpiwatch entity add "NAME"` to create one[/dim]')
        return

    store = AlertStore()
    scheduler = SnapshotScheduler(mirror_remote=False)

    table = Table(title="Entities")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Schedules", justify="right")
    table.add_column("Alerts", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Created")

    for item in entities:
        summary = store.get_status_summary(item.id)
        schedules = scheduler.list_schedules(entity_id=item.id, active_only=True)
        table.add_row(
            str(item.id),
            item.name,
            str(len(schedules)),
            str(summary.total),
            status_text(summary.highest_severity) if summary.total else MISSING,
            format_timestamp(item.created_at),
        )

    console.print(table)


@entity.command("remove")
@click.argument("entity_id", type=int)
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
@handle_cli_errors
def entity_remove(ctx: click.Context, entity_id: int, yes: bool) -> None:
    """
    Remove an entity with its alerts, schedules and snapshots.

    Remote copies of its alerts are deleted when the backend is configured.
    """
    console: Console = ctx.obj["console"]

    init_db()
    target = get_entity(entity_id)
    if target is None:
        raise EntityNotFoundError(entity_id)

    if not yes:
        click.confirm(f"Remove entity '{target.name}' and all of its data?", abort=True)

    alert_store = AlertStore()
    if config.has_backend:
        reconciler = AlertReconciler(alert_store=alert_store)
        for alert in alert_store.list_alerts(entity_id=entity_id):
            if alert.remote_id is not None:
                reconciler.delete_alert(alert.id)

    alerts_removed = alert_store.delete_entity_alerts(entity_id)
    schedules_removed = SnapshotScheduler(mirror_remote=False).delete_schedules_for_entity(entity_id)
    snapshots_removed = SnapshotStore().delete_entity_history(entity_id)
    delete_entity(entity_id)

    console.print(f"[green]Removed entity {entity_id}: {target.name}[/green]")
    console.print(
        f"[dim]{alerts_removed} alert(s), {schedules_removed} schedule(s), "
        f"{snapshots_removed} snapshot(s) deleted[/dim]"
    )
