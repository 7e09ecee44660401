"""Snapshot capture, storage and scheduling."""

from kpiwatch.core.snapshots.scheduler import (
    SnapshotRunSummary,
    SnapshotScheduler,
    clamp_interval,
)
from kpiwatch.core.snapshots.store import SnapshotStatistics, SnapshotStore, Trend

__all__ = [
    "SnapshotRunSummary",
    "SnapshotScheduler",
    "clamp_interval",
    "SnapshotStatistics",
    "SnapshotStore",
    "Trend",
]
