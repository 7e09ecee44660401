"""Centralized formatting utilities for CLI output.

Provides consistent colors and indicators for alert statuses, severities
and snapshot trends across all CLI commands.
"""

from typing import Optional

from rich.text import Text

from kpiwatch.core.constants import OPERATOR_LABELS, PERCENT_OPERATORS
from kpiwatch.core.notifications.messages import format_value


# Missing value indicator
MISSING = "-"

STATUS_COLORS = {
    "ok": "green",
    "warning": "yellow",
    "critical": "red bold",
    "recovery": "cyan",
}

TREND_ARROWS = {
    "up": ("^", "green"),
    "down": ("v", "red"),
    "neutral": ("~", "dim"),
}


def status_text(status: Optional[str]) -> Text:
    """Rich Text for an alert status or severity."""
    if not status:
        return Text(MISSING, style="dim")
    return Text(status.upper(), style=STATUS_COLORS.get(status, "white"))


def format_metric(value: Optional[float]) -> str:
    """Metric value for table cells."""
    return MISSING if value is None else format_value(value)


def format_threshold(operator: str, value: Optional[float]) -> str:
    """Threshold with its operator, e.g. "exceeds 100" or "increased by 10%"."""
    if value is None:
        return MISSING
    label = OPERATOR_LABELS.get(operator, operator)
    suffix = "%" if operator in PERCENT_OPERATORS else ""
    return f"{label} {format_value(value)}{suffix}"


def trend_text(direction: str, percentage: float) -> Text:
    """Arrow and percentage for a snapshot trend."""
    arrow, color = TREND_ARROWS.get(direction, TREND_ARROWS["neutral"])
    return Text(f"{arrow} {percentage:.1f}%", style=color)


def format_timestamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else MISSING
