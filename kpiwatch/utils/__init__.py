"""Utility modules for KPIWatch."""

from kpiwatch.utils.clock import (
    as_utc,
    days_ago,
    resolve_now,
    seconds_between,
    utcnow,
)

__all__ = [
    "as_utc",
    "days_ago",
    "resolve_now",
    "seconds_between",
    "utcnow",
]
