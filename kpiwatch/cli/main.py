"""
KPIWatch CLI - KPI snapshots and threshold alerts for report dashboards.

Entry point for the command-line interface. Provides commands for:
- Dashboard entity management
- Report previews (cached result rows)
- Snapshot schedules (register, record, run due captures)
- Alerts (definitions, due checks, history, backend sync)
- Database management (init, retention cleanup)

Usage:
    kpiwatch --help
    kpiwatch db init
    kpiwatch entity add "Sales dashboard" --url https://example.com/dash/1
    kpiwatch snapshots register 1 42 --interval 3600
    kpiwatch snapshots run
    kpiwatch alerts add 1 42 --operator gt --warning 100 --critical 200
    kpiwatch alerts check
"""

import logging
from collections import OrderedDict

import click
from rich.console import Console
from rich.logging import RichHandler

from kpiwatch import __version__
from kpiwatch.cli.commands import alerts, db, entity, report, snapshots


class OrderedGroup(click.Group):
    """Custom group that displays commands in organized categories."""

    COMMAND_GROUPS: OrderedDict[str, list[str]] = OrderedDict([
        ("Monitoring", ["alerts", "snapshots", "report"]),
        ("Setup", ["entity", "db"]),
    ])

    def format_commands(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Write commands in organized groups."""
        for group_name, cmd_names in self.COMMAND_GROUPS.items():
            commands = []
            for cmd_name in cmd_names:
                cmd = self.get_command(ctx, cmd_name)
                if cmd:
                    help_text = cmd.get_short_help_str(limit=formatter.width)
                    commands.append((cmd_name, help_text))

            if commands:
                with formatter.section(group_name):
                    formatter.write_dl(commands)

# Global console for rich output
console = Console()


def configure_logging(verbose: bool) -> None:
    """Route package logs through Rich; DEBUG when verbose, WARNING otherwise."""
    root = logging.getLogger("kpiwatch")
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=verbose)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group(cls=OrderedGroup)
@click.version_option(version=__version__, prog_name="kpiwatch")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """
    KPIWatch - KPI snapshots and threshold alerts.

    Capture report metrics on a schedule, evaluate warning and critical
    thresholds against them, and notify users in-app or by email.

    \b
    Examples:
        kpiwatch db init                       # Create the state database
        kpiwatch entity add "Sales dashboard"  # Register a dashboard
        kpiwatch snapshots register 1 42       # Capture report 42 hourly
        kpiwatch snapshots run                 # Execute due captures (cron)
        kpiwatch alerts add 1 42 -o gt -w 100  # Warn when value > 100
        kpiwatch alerts check                  # Evaluate due alerts (cron)
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["console"] = console


# Register command groups
cli.add_command(alerts.alerts)
cli.add_command(snapshots.snapshots)
cli.add_command(report.report)
cli.add_command(entity.entity)
cli.add_command(db.db)


def main() -> None:
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
