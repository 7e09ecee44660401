"""Alert management commands for report metric monitoring."""

import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from kpiwatch.cli.error_handler import handle_cli_errors
from kpiwatch.cli.formatting import (
    MISSING,
    format_metric,
    format_threshold,
    format_timestamp,
    status_text,
)
from kpiwatch.config import config
from kpiwatch.core.alerts.reconciler import AlertReconciler
from kpiwatch.core.alerts.scheduler import AlertScheduler
from kpiwatch.core.alerts.store import AlertConfig, AlertStore
from kpiwatch.core.constants import (
    CHANNELS,
    DEFAULT_CHECK_INTERVAL,
    OPERATORS,
    REPORT_SOURCES,
    SOURCE_PRIMARY,
)
from kpiwatch.core.exceptions import EntityNotFoundError, KpiWatchError
from kpiwatch.core.notifications.channels import InAppChannel
from kpiwatch.db.database import entity_exists, init_db

logger = logging.getLogger(__name__)


@click.group()
@click.pass_context
def alerts(ctx: click.Context) -> None:
    """
    Manage report metric alerts.

    Alerts compare the latest snapshot of a report against warning and
    critical thresholds, or against the previous snapshot for the
    percentage operators.

    \b
    Examples:
        kpiwatch alerts add 1 42 --operator gt --warning 100 --critical 200
        kpiwatch alerts add 1 42 -o decrease_pct -w 10 --channel email --email ops@example.com
        kpiwatch alerts list
        kpiwatch alerts check
        kpiwatch alerts history --entity 1
    """
    pass


@alerts.command("add")
@click.argument("entity_id", type=int)
@click.argument("report_id")
@click.option("-o", "--operator", type=click.Choice(list(OPERATORS)), required=True, help="Comparison operator")
@click.option("-w", "--warning", "warning_value", type=float, default=None, help="Warning threshold")
@click.option("-c", "--critical", "critical_value", type=float, default=None, help="Critical threshold")
@click.option("--source", type=click.Choice(list(REPORT_SOURCES)), default=SOURCE_PRIMARY, help="Report source")
@click.option("--name", "alert_name", default=None, help="Alert display name")
@click.option("--report-name", default=None, help="Report display name")
@click.option("--description", default=None, help="Free-text description")
@click.option("--field", "metric_field", default="value", help="Metric field (default: value)")
@click.option("--interval", type=int, default=DEFAULT_CHECK_INTERVAL, help="Check interval in seconds (min 300)")
@click.option("--channel", "channels", type=click.Choice(list(CHANNELS)), multiple=True, help="Notification channel (repeatable)")
@click.option("--email", "emails", multiple=True, help="Email recipient(s), repeatable or comma separated")
@click.option("--target", "targets", type=int, multiple=True, help="User id to notify in-app (repeatable)")
@click.option("--role", "roles", multiple=True, help="Role whose members are notified (repeatable)")
@click.option("--notify-warning/--no-notify-warning", default=True, help="Notify on warning")
@click.option("--notify-critical/--no-notify-critical", default=True, help="Notify on critical")
@click.option("--notify-recovery/--no-notify-recovery", default=False, help="Notify on recovery")
@click.option("--push", is_flag=True, help="Also create the alert on the report backend")
@click.pass_context
@handle_cli_errors
def alerts_add(
    ctx: click.Context,
    entity_id: int,
    report_id: str,
    operator: str,
    warning_value: float,
    critical_value: float,
    source: str,
    alert_name: str,
    report_name: str,
    description: str,
    metric_field: str,
    interval: int,
    channels: tuple,
    emails: tuple,
    targets: tuple,
    roles: tuple,
    notify_warning: bool,
    notify_critical: bool,
    notify_recovery: bool,
    push: bool,
) -> None:
    """Create or update the alert for an entity's report metric."""
    console: Console = ctx.obj["console"]

    init_db()
    if not entity_exists(entity_id):
        raise EntityNotFoundError(entity_id)

    alert_config = AlertConfig(
        entity_id=entity_id,
        report_id=report_id,
        operator=operator,
        warning_value=warning_value,
        critical_value=critical_value,
        report_source=source,
        report_name=report_name,
        alert_name=alert_name,
        alert_description=description,
        metric_field=metric_field,
        check_interval_seconds=interval,
        notify_on_warning=notify_warning,
        notify_on_critical=notify_critical,
        notify_on_recovery=notify_recovery,
        notify_channels=list(channels) or ["inapp"],
        notify_targets=list(targets),
        notify_roles=list(roles),
        notify_emails=",".join(emails),
    )
    alert = AlertStore().save(alert_config)

    console.print(f"[green]Saved alert {alert.id}: {alert.display_name}[/green]")
    console.print(f"  Report: {alert.report_id} ({alert.report_source})")
    if alert.warning_value is not None:
        console.print(f"  Warning: {format_threshold(alert.operator, alert.warning_value)}")
    if alert.critical_value is not None:
        console.print(f"  Critical: {format_threshold(alert.operator, alert.critical_value)}")
    console.print(f"  Channels: {', '.join(alert.notify_channels)}")
    console.print(f"  Check every: {alert.check_interval_seconds}s")

    if push:
        config.validate()
        remote_id = AlertReconciler().push_alert(alert.id)
        if remote_id is None:
            console.print("[yellow]Could not push alert to the backend (see log)[/yellow]")
        else:
            console.print(f"  Remote id: {remote_id}")

    console.print()
    console.print("[dim]Run `kpiwatch alerts check` to evaluate alerts[/dim]")


def _reconcile_on_load(entity_id: int) -> None:
    """Drop orphaned backend alerts whenever an entity's alerts are loaded."""
    if not config.has_backend:
        return
    try:
        result = AlertReconciler().reconcile_entity(entity_id)
    except KpiWatchError as e:
        logger.warning(f"Reconciliation of entity {entity_id} skipped: {e}")
        return
    if result.deleted:
        logger.info(f"Removed {result.deleted} orphaned remote alert(s) of entity {entity_id}")


@alerts.command("list")
@click.option("--entity", "entity_id", type=int, default=None, help="Filter by entity")
@click.option("--enabled-only", is_flag=True, help="Show only enabled alerts")
@click.pass_context
@handle_cli_errors
def alerts_list(ctx: click.Context, entity_id: int, enabled_only: bool) -> None:
    """List configured alerts."""
    console: Console = ctx.obj["console"]

    init_db()
    if entity_id is not None:
        _reconcile_on_load(entity_id)
    items = AlertStore().list_alerts(entity_id=entity_id, enabled_only=enabled_only)

    if not items:
        console.print("[yellow]No alerts configured[/yellow]")
        console.print("[dim]Tip: Run `kpiwatch alerts add ENTITY_ID REPORT_ID --operator ...` to create one[/dim]")
        return

    table = Table(title="Configured Alerts")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Entity", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Warning")
    table.add_column("Critical")
    table.add_column("Last Value", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Checked")

    for alert in items:
        status = status_text(alert.current_status) if alert.enabled else Text("Disabled", style="dim")
        table.add_row(
            str(alert.id),
            str(alert.entity_id),
            alert.display_name,
            format_threshold(alert.operator, alert.warning_value),
            format_threshold(alert.operator, alert.critical_value),
            format_metric(alert.last_value),
            status,
            format_timestamp(alert.last_checked_at),
        )

    console.print(table)


@alerts.command("status")
@click.argument("entity_id", type=int)
@click.pass_context
@handle_cli_errors
def alerts_status(ctx: click.Context, entity_id: int) -> None:
    """Show the alert status summary of an entity."""
    console: Console = ctx.obj["console"]

    init_db()
    if not entity_exists(entity_id):
        raise EntityNotFoundError(entity_id)

    _reconcile_on_load(entity_id)
    summary = AlertStore().get_status_summary(entity_id)

    lines = Text()
    lines.append("Overall: ")
    lines.append_text(status_text(summary.highest_severity))
    lines.append(f"\nEnabled alerts: {summary.total}")
    lines.append(f"\nOK: {summary.ok}  Warning: {summary.warning}  Critical: {summary.critical}")
    border = {"critical": "red", "warning": "yellow"}.get(summary.highest_severity, "green")
    console.print(Panel(lines, title=f"Entity {entity_id}", border_style=border, padding=(1, 2)))

    for alert in summary.active_alerts:
        console.print(
            f"  [bold]{alert.display_name}[/bold] = {format_metric(alert.last_value)} "
            f"({alert.current_status})"
        )


@alerts.command("history")
@click.argument("alert_id", type=int, required=False)
@click.option("--entity", "entity_id", type=int, default=None, help="History across an entity's alerts")
@click.option("--limit", type=int, default=20, help="Number of entries to show")
@click.pass_context
@handle_cli_errors
def alerts_history(ctx: click.Context, alert_id: int, entity_id: int, limit: int) -> None:
    """Show status transitions of an alert or entity."""
    console: Console = ctx.obj["console"]

    if alert_id is None and entity_id is None:
        console.print("[red]Error: Provide ALERT_ID or --entity[/red]")
        raise SystemExit(1)

    init_db()
    store = AlertStore()
    if alert_id is not None:
        entries = store.get_history(alert_id, limit=limit)
    else:
        entries = store.get_entity_history(entity_id, limit=limit)

    if not entries:
        console.print("[dim]No alert history[/dim]")
        return

    table = Table(title="Alert History")
    table.add_column("When")
    table.add_column("Alert", justify="right", style="dim")
    table.add_column("From", justify="center")
    table.add_column("To", justify="center")
    table.add_column("Value", justify="right")
    table.add_column("Threshold", justify="right")
    table.add_column("Notified", justify="center")
    table.add_column("Details")

    for entry in entries:
        table.add_row(
            format_timestamp(entry.created_at),
            str(entry.alert_id),
            status_text(entry.previous_status),
            status_text(entry.new_status),
            format_metric(entry.metric_value),
            format_metric(entry.threshold_value),
            "yes" if entry.notified else MISSING,
            entry.details or "",
        )

    console.print(table)


@alerts.command("enable")
@click.argument("alert_id", type=int)
@click.pass_context
@handle_cli_errors
def alerts_enable(ctx: click.Context, alert_id: int) -> None:
    """Enable an alert."""
    _set_enabled(ctx.obj["console"], alert_id, True)


@alerts.command("disable")
@click.argument("alert_id", type=int)
@click.pass_context
@handle_cli_errors
def alerts_disable(ctx: click.Context, alert_id: int) -> None:
    """Disable an alert without deleting it."""
    _set_enabled(ctx.obj["console"], alert_id, False)


def _set_enabled(console: Console, alert_id: int, enabled: bool) -> None:
    init_db()
    if not AlertStore().set_enabled(alert_id, enabled):
        console.print(f"[red]Alert {alert_id} not found[/red]")
        raise SystemExit(1)
    console.print(f"[green]Alert {alert_id} {'enabled' if enabled else 'disabled'}[/green]")


@alerts.command("remove")
@click.argument("alert_id", type=int)
@click.pass_context
@handle_cli_errors
def alerts_remove(ctx: click.Context, alert_id: int) -> None:
    """Delete an alert (and its backend copy, if any)."""
    console: Console = ctx.obj["console"]

    init_db()
    store = AlertStore()
    if config.has_backend:
        removed = AlertReconciler(alert_store=store).delete_alert(alert_id)
    else:
        removed = store.delete(alert_id)

    if not removed:
        console.print(f"[red]Alert {alert_id} not found[/red]")
        raise SystemExit(1)
    console.print(f"[green]Deleted alert {alert_id}[/green]")


@alerts.command("check")
@click.pass_context
@handle_cli_errors
def alerts_check(ctx: click.Context) -> None:
    """
    Evaluate every due alert against the latest snapshots.

    Intended to run from cron after `kpiwatch snapshots run`.
    """
    console: Console = ctx.obj["console"]

    init_db()
    with console.status("[bold blue]Checking alerts...[/bold blue]"):
        summary = AlertScheduler().run_due_checks()

    if summary.processed == 0:
        console.print("[dim]No alerts due[/dim]")
        return

    console.print(f"[green]Checked {summary.processed} alert(s)[/green]")
    if summary.triggered:
        console.print(f"[yellow]{summary.triggered} triggered, {summary.notified} notified[/yellow]")
    if summary.errors:
        console.print(f"[red]{summary.errors} entity check(s) failed (see log)[/red]")
        raise SystemExit(1)


@alerts.command("sync")
@click.argument("alert_id", type=int)
@click.pass_context
@handle_cli_errors
def alerts_sync(ctx: click.Context, alert_id: int) -> None:
    """Create or update the backend copy of an alert."""
    console: Console = ctx.obj["console"]

    config.validate()
    init_db()
    remote_id = AlertReconciler().push_alert(alert_id)
    if remote_id is None:
        console.print(f"[red]Alert {alert_id} could not be pushed[/red]")
        raise SystemExit(1)
    console.print(f"[green]Alert {alert_id} synced as remote alert {remote_id}[/green]")


@alerts.command("reconcile")
@click.argument("entity_id", type=int)
@click.pass_context
@handle_cli_errors
def alerts_reconcile(ctx: click.Context, entity_id: int) -> None:
    """Delete backend alerts of an entity's reports that are unknown locally."""
    console: Console = ctx.obj["console"]

    config.validate()
    init_db()
    result = AlertReconciler().reconcile_entity(entity_id)

    console.print(
        f"[green]Checked {result.checked_reports} report(s), "
        f"deleted {result.deleted} orphaned remote alert(s)[/green]"
    )
    if result.failures:
        console.print(f"[yellow]{result.failures} backend call(s) failed; run again later[/yellow]")


@alerts.command("inbox")
@click.argument("user_id", type=int)
@click.option("--unread", is_flag=True, help="Show only unread messages")
@click.option("--limit", type=int, default=20, help="Number of messages to show")
@click.pass_context
@handle_cli_errors
def alerts_inbox(ctx: click.Context, user_id: int, unread: bool, limit: int) -> None:
    """Show in-app alert notifications for a user."""
    console: Console = ctx.obj["console"]

    init_db()
    messages = InAppChannel.get_inbox(user_id, unread_only=unread, limit=limit)
    if not messages:
        console.print("[dim]Inbox is empty[/dim]")
        return

    for message in messages:
        console.print(
            Panel(
                Text(message.body),
                title=Text(message.subject),
                subtitle=format_timestamp(message.created_at),
                border_style={"critical": "red", "warning": "yellow"}.get(message.severity, "green"),
            )
        )
