"""Report preview commands."""

import click
from rich.console import Console
from rich.table import Table

from kpiwatch.cli.error_handler import handle_cli_errors
from kpiwatch.cli.formatting import MISSING, format_metric, trend_text
from kpiwatch.core.cache import ReportDataCache
from kpiwatch.core.constants import REPORT_SOURCES, SOURCE_PRIMARY
from kpiwatch.core.metrics.extraction import extract_metric_value
from kpiwatch.core.metrics.source import MetricSource
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.database import init_db

# Shared across invocations within one process (e.g. an interactive shell)
_cache = ReportDataCache()


@click.group()
def report() -> None:
    """
    Preview report data and metric values.

    \b
    Examples:
        kpiwatch report preview 42
        kpiwatch report value 42 --entity 1
    """
    pass


@report.command("preview")
@click.argument("report_id")
@click.option("--source", type=click.Choice(list(REPORT_SOURCES)), default=SOURCE_PRIMARY, help="Report source")
@click.option("--rows", "max_rows", type=int, default=20, help="Rows to display")
@click.option("--refresh", is_flag=True, help="Bypass the report cache")
@click.pass_context
@handle_cli_errors
def report_preview(ctx: click.Context, report_id: str, source: str, max_rows: int, refresh: bool) -> None:
    """Show the result rows of a report."""
    console: Console = ctx.obj["console"]

    if refresh:
        _cache.invalidate(report_id, source)

    metric_source = MetricSource()
    with console.status(f"[bold blue]Loading {report_id}...[/bold blue]"):
        _cache.preload(report_id, source, lambda: metric_source.fetch_rows(report_id, source), raise_errors=True)
        rows = _cache.get(report_id, source)
        if rows is None:
            # Another caller is still loading this report
            rows = metric_source.fetch_rows(report_id, source)

    if not rows:
        console.print(f"[yellow]Report {report_id} returned no rows[/yellow]")
        return

    columns = list(rows[0].keys())
    table = Table(title=f"Report {report_id} ({source})")
    for column in columns:
        table.add_column(str(column))
    for row in rows[:max_rows]:
        table.add_row(*[MISSING if row.get(c) is None else str(row.get(c)) for c in columns])

    console.print(table)
    console.print(
        f"[dim]{len(rows)} row(s), showing {min(len(rows), max_rows)} | "
        f"metric value {format_metric(extract_metric_value(rows))}[/dim]"
    )


@report.command("value")
@click.argument("report_id")
@click.option("--source", type=click.Choice(list(REPORT_SOURCES)), default=SOURCE_PRIMARY, help="Report source")
@click.option("--entity", "entity_id", type=int, default=None, help="Compare with the entity's latest snapshot")
@click.pass_context
@handle_cli_errors
def report_value(ctx: click.Context, report_id: str, source: str, entity_id: int) -> None:
    """Fetch the current metric value of a report without storing it."""
    console: Console = ctx.obj["console"]

    with console.status(f"[bold blue]Fetching {report_id}...[/bold blue]"):
        result = MetricSource().fetch_metric(report_id, source)

    console.print(f"[bold]{report_id}[/bold] = {format_metric(result.value)}")
    console.print(f"[dim]{result.row_count} row(s) in {result.execution_time_ms}ms[/dim]")

    if entity_id is not None:
        init_db()
        trend = SnapshotStore().calculate_trend(entity_id, report_id, result.value)
        if trend.has_history:
            line = trend_text(trend.direction, abs(trend.percentage))
            line.append(f" vs {format_metric(trend.previous_value)}", style="dim")
            console.print(line)
        else:
            console.print("[dim]No stored snapshot to compare with[/dim]")
