"""Shared CLI error handling decorator.

Catches the package's domain errors in a single place so every command
reports them the same way and exits with status 1. Commands can still
handle command-specific exceptions internally before the decorator
catches the rest.

Usage:
    @click.command()
    @click.pass_context
    @handle_cli_errors
    def my_command(ctx, ...):
        ...
"""

import functools
import logging

import click
from rich.console import Console

from kpiwatch.core.exceptions import (
    AlertConfigError,
    BackendError,
    ConfigurationError,
    EntityNotFoundError,
    MetricSourceError,
)

logger = logging.getLogger(__name__)


def handle_cli_errors(f):
    """Decorator that catches common CLI exceptions with Rich-formatted output.

    Must be applied AFTER @click.pass_context so the first positional arg
    is the Click context (which provides the console via ctx.obj["console"]).
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context(silent=True)
        console = ctx.obj["console"] if ctx and ctx.obj and "console" in ctx.obj else Console()

        try:
            return f(*args, **kwargs)
        except SystemExit:
            raise  # Don't intercept explicit exits
        except ConfigurationError as e:
            console.print(f"[red]Configuration Error:[/red] {e}")
            console.print("[dim]Check the KPIWATCH_* settings in your .env file.[/dim]")
            raise SystemExit(1)
        except AlertConfigError as e:
            console.print(f"[red]Invalid alert:[/red] {e}")
            raise SystemExit(1)
        except EntityNotFoundError as e:
            console.print(f"[red]{e}[/red]")
            console.print("[dim]Tip: Run `kpiwatch entity list` to see registered entities[/dim]")
            raise SystemExit(1)
        except BackendError as e:
            console.print(f"[red]Backend Error:[/red] {e}")
            console.print("[yellow]The report backend may be down. Try again in a few minutes.[/yellow]")
            raise SystemExit(1)
        except MetricSourceError as e:
            console.print(f"[red]Metric Error:[/red] {e}")
            raise SystemExit(1)
        except click.exceptions.Exit:
            raise  # Don't intercept Click exits
        except Exception as e:
            logger.exception("Unexpected error in %s command", f.__name__)
            console.print(f"[red]Unexpected error:[/red] {e}")
            raise SystemExit(1)

    return wrapper
