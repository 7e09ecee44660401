"""
Snapshot history storage.

Persists captured metric values per (entity, report) pair and answers
the questions the alert pipeline and the dashboards ask of them:
latest value, previous value, trend, sparkline series and statistics.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlmodel import col, func, select

from kpiwatch.config import config
from kpiwatch.core.constants import (
    MAX_SNAPSHOTS_PER_PAIR,
    SOURCE_PRIMARY,
    TREND_NOISE_PERCENT,
)
from kpiwatch.db.database import get_session
from kpiwatch.db.models import Snapshot
from kpiwatch.utils.clock import days_ago, resolve_now, seconds_between

logger = logging.getLogger(__name__)


@dataclass
class Trend:
    """Direction and size of the change against the stored value."""

    direction: str  # up, down, neutral
    percentage: float
    previous_value: Optional[float]
    has_history: bool


@dataclass
class SnapshotStatistics:
    """Aggregate view over a pair's stored snapshots."""

    count: int
    min: Optional[float]
    max: Optional[float]
    avg: Optional[float]
    first_recorded: Optional[datetime]
    last_recorded: Optional[datetime]


class SnapshotStore:
    """Read/write access to the snapshots table."""

    def __init__(self, max_per_pair: int = MAX_SNAPSHOTS_PER_PAIR):
        self.max_per_pair = max_per_pair

    @staticmethod
    def _pair_query(entity_id: int, report_id: str):
        return (
            select(Snapshot)
            .where(Snapshot.entity_id == entity_id)
            .where(Snapshot.report_id == report_id)
            .order_by(col(Snapshot.captured_at).desc(), col(Snapshot.id).desc())
        )

    def save_value(
        self,
        entity_id: int,
        report_id: str,
        value: float,
        source: str = SOURCE_PRIMARY,
        row_count: Optional[int] = None,
        execution_time_ms: Optional[int] = None,
        source_kind: str = "cron",
        min_interval_seconds: int = 0,
        now: Optional[datetime] = None,
    ) -> Optional[Snapshot]:
        """
        Store a captured value.

        Args:
            min_interval_seconds: Skip the write when the latest stored
                snapshot is younger than this
            now: Capture time (defaults to current UTC time)

        Returns:
            The stored Snapshot, or None when skipped as too recent
        """
        now = resolve_now(now)

        if min_interval_seconds > 0:
            last = self.get_latest(entity_id, report_id)
            if last is not None and seconds_between(last.captured_at, now) < min_interval_seconds:
                logger.debug(
                    f"Skipping snapshot for entity {entity_id} report {report_id}: "
                    f"last capture at {last.captured_at}"
                )
                return None

        with get_session() as session:
            snapshot = Snapshot(
                entity_id=entity_id,
                report_id=report_id,
                report_source=source,
                value=float(value),
                row_count=row_count,
                execution_time_ms=execution_time_ms,
                source_kind=source_kind,
                captured_at=now,
            )
            session.add(snapshot)
            session.flush()
            session.refresh(snapshot)
            session.expunge(snapshot)

        self.cleanup_excess(entity_id, report_id)
        return snapshot

    def get_latest(self, entity_id: int, report_id: str) -> Optional[Snapshot]:
        """Most recent snapshot for the pair."""
        with get_session() as session:
            snapshot = session.exec(self._pair_query(entity_id, report_id).limit(1)).first()
            if snapshot is not None:
                session.expunge(snapshot)
            return snapshot

    def get_latest_value(self, entity_id: int, report_id: str) -> Optional[float]:
        snapshot = self.get_latest(entity_id, report_id)
        return snapshot.value if snapshot else None

    def get_previous_value(self, entity_id: int, report_id: str) -> Optional[float]:
        """Value of the second most recent snapshot (baseline for percent change)."""
        with get_session() as session:
            snapshot = session.exec(
                self._pair_query(entity_id, report_id).offset(1).limit(1)
            ).first()
            return snapshot.value if snapshot else None

    def get_history(self, entity_id: int, report_id: str, limit: int = 10) -> list[Snapshot]:
        """
        Most recent snapshots for the pair.

        Returns:
            Up to ``limit`` snapshots in chronological order (oldest first)
        """
        with get_session() as session:
            snapshots = list(session.exec(self._pair_query(entity_id, report_id).limit(limit)).all())
            for snapshot in snapshots:
                session.expunge(snapshot)
        snapshots.reverse()
        return snapshots

    def get_sparkline_data(self, entity_id: int, report_id: str, points: int = 10) -> list[float]:
        return [s.value for s in self.get_history(entity_id, report_id, points)]

    def calculate_trend(self, entity_id: int, report_id: str, current_value: float) -> Trend:
        """
        Compare a fresh value with the latest stored one.

        Changes under half a percent are reported as neutral.
        """
        latest = self.get_latest(entity_id, report_id)
        if latest is None:
            return Trend(direction="neutral", percentage=0.0, previous_value=None, has_history=False)

        previous = latest.value
        if previous != 0:
            change = (current_value - previous) / abs(previous) * 100
        elif current_value > 0:
            change = 100.0
        else:
            change = 0.0

        if change > TREND_NOISE_PERCENT:
            direction = "up"
        elif change < -TREND_NOISE_PERCENT:
            direction = "down"
        else:
            direction = "neutral"

        return Trend(
            direction=direction,
            percentage=round(change, 1),
            previous_value=previous,
            has_history=True,
        )

    def get_statistics(self, entity_id: int, report_id: str) -> SnapshotStatistics:
        with get_session() as session:
            row = session.exec(
                select(
                    func.count(Snapshot.id),
                    func.min(Snapshot.value),
                    func.max(Snapshot.value),
                    func.avg(Snapshot.value),
                    func.min(Snapshot.captured_at),
                    func.max(Snapshot.captured_at),
                )
                .where(Snapshot.entity_id == entity_id)
                .where(Snapshot.report_id == report_id)
            ).one()

        count, min_value, max_value, avg_value, first, last = row
        return SnapshotStatistics(
            count=int(count or 0),
            min=float(min_value) if min_value is not None else None,
            max=float(max_value) if max_value is not None else None,
            avg=round(float(avg_value), 2) if avg_value is not None else None,
            first_recorded=first,
            last_recorded=last,
        )

    def cleanup_excess(self, entity_id: int, report_id: str) -> int:
        """Keep only the newest ``max_per_pair`` snapshots of the pair."""
        with get_session() as session:
            keep_ids = session.exec(
                select(Snapshot.id)
                .where(Snapshot.entity_id == entity_id)
                .where(Snapshot.report_id == report_id)
                .order_by(col(Snapshot.captured_at).desc(), col(Snapshot.id).desc())
                .limit(self.max_per_pair)
            ).all()

            result = session.exec(
                delete(Snapshot)
                .where(Snapshot.entity_id == entity_id)
                .where(Snapshot.report_id == report_id)
                .where(col(Snapshot.id).not_in(list(keep_ids)))
            )
            removed = result.rowcount or 0

        if removed:
            logger.debug(f"Pruned {removed} excess snapshots for entity {entity_id} report {report_id}")
        return removed

    def cleanup_old(self, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """
        Delete snapshots older than the retention window.

        Returns:
            Number of snapshots deleted
        """
        retention_days = retention_days if retention_days is not None else config.snapshot_retention_days
        cutoff = days_ago(retention_days, now)

        with get_session() as session:
            result = session.exec(delete(Snapshot).where(Snapshot.captured_at < cutoff))
            count = result.rowcount or 0

        if count > 0:
            logger.info(f"Deleted {count} snapshots older than {retention_days} days")
        return count

    def delete_entity_history(self, entity_id: int) -> int:
        with get_session() as session:
            result = session.exec(delete(Snapshot).where(Snapshot.entity_id == entity_id))
            return result.rowcount or 0
