"""
Clock helpers for KPIWatch.

All timestamps are timezone-aware UTC. SQLite drops tzinfo on round trip,
so the UTCDateTime column type reattaches it on load.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Args:
        value: Aware or naive datetime (naive values are assumed to be UTC)

    Returns:
        Aware UTC datetime, or None if value is None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime]) -> datetime:
    """Use the supplied time (normalized) or the current UTC time."""
    return as_utc(now) if now is not None else utcnow()


def seconds_between(earlier: datetime, later: datetime) -> float:
    """Elapsed seconds from earlier to later."""
    return (as_utc(later) - as_utc(earlier)).total_seconds()


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Cutoff datetime for retention policies."""
    return resolve_now(now) - timedelta(days=days)
