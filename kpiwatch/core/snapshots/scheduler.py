"""
Automated snapshot scheduling.

Each monitored (entity, report) pair has a schedule row with an interval.
A cron-style run picks the due schedules, captures the metric, stores it,
and advances the schedule from the execution time. Designed to be called
via CLI commands or cron jobs.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete
from sqlmodel import col, select

from kpiwatch.config import config
from kpiwatch.core.constants import (
    DEFAULT_SNAPSHOT_INTERVAL,
    MAX_SNAPSHOT_INTERVAL,
    MIN_SNAPSHOT_INTERVAL,
    SEVERITIES,
    SEVERITY_WARNING,
    SOURCE_PRIMARY,
)
from kpiwatch.core.exceptions import BackendError, KpiWatchError
from kpiwatch.core.metrics.source import MetricResult, MetricSource
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.database import entity_exists, get_session
from kpiwatch.db.models import SnapshotSchedule
from kpiwatch.utils.clock import resolve_now

logger = logging.getLogger(__name__)


def clamp_interval(interval_seconds: int) -> int:
    """Clamp a snapshot interval to the supported range."""
    return max(MIN_SNAPSHOT_INTERVAL, min(MAX_SNAPSHOT_INTERVAL, int(interval_seconds)))


@dataclass
class SnapshotRunSummary:
    """Outcome of one scheduler run."""

    succeeded: int = 0
    failed: int = 0
    failed_schedule_ids: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


class SnapshotScheduler:
    """
    Registers, selects and executes snapshot schedules.

    Remote mirroring is best effort: the local snapshot is the success
    criterion, a failed mirror is only logged.
    """

    def __init__(
        self,
        metric_source: Optional[MetricSource] = None,
        store: Optional[SnapshotStore] = None,
        dispatcher=None,
        mirror_remote: Optional[bool] = None,
    ):
        self._metric_source = metric_source
        self.store = store or SnapshotStore()
        self._dispatcher = dispatcher
        self.mirror_remote = config.has_backend if mirror_remote is None else mirror_remote

    @property
    def metric_source(self) -> MetricSource:
        if self._metric_source is None:
            self._metric_source = MetricSource()
        return self._metric_source

    @property
    def dispatcher(self):
        if self._dispatcher is None:
            from kpiwatch.core.alerts.dispatcher import NotificationDispatcher

            self._dispatcher = NotificationDispatcher()
        return self._dispatcher

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_pair(
        self,
        entity_id: int,
        report_id: str,
        source: str = SOURCE_PRIMARY,
        interval_seconds: int = DEFAULT_SNAPSHOT_INTERVAL,
        initial_value: float = 0,
        now: Optional[datetime] = None,
    ) -> SnapshotSchedule:
        """
        Create or refresh the schedule for a pair.

        Idempotent: an existing row gets the new interval and value, is
        reactivated, and becomes due one interval from now.
        """
        now = resolve_now(now)
        interval = clamp_interval(interval_seconds)

        with get_session() as session:
            schedule = session.exec(
                select(SnapshotSchedule)
                .where(SnapshotSchedule.entity_id == entity_id)
                .where(SnapshotSchedule.report_id == report_id)
            ).first()

            if schedule is None:
                schedule = SnapshotSchedule(
                    entity_id=entity_id,
                    report_id=report_id,
                    report_source=source,
                    interval_seconds=interval,
                    next_due_at=now + timedelta(seconds=interval),
                    created_at=now,
                )
                logger.info(f"Registered snapshot schedule for entity {entity_id} report {report_id}")

            schedule.report_source = source
            schedule.interval_seconds = interval
            schedule.last_snapshot_at = now
            schedule.next_due_at = now + timedelta(seconds=interval)
            schedule.last_value = float(initial_value)
            schedule.is_active = True
            schedule.updated_at = now

            session.add(schedule)
            session.flush()
            session.refresh(schedule)
            session.expunge(schedule)
            return schedule

    def register_if_absent(
        self,
        entity_id: int,
        report_id: str,
        source: str = SOURCE_PRIMARY,
        interval_seconds: int = DEFAULT_SNAPSHOT_INTERVAL,
        value: float = 0,
        row_count: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[SnapshotSchedule]:
        """
        First-capture bootstrap for a pair.

        Creates the schedule and a bootstrap snapshot only when the pair
        has no schedule yet.

        Returns:
            The new schedule, or None if one already existed
        """
        if self.get_schedule(entity_id, report_id) is not None:
            return None

        now = resolve_now(now)
        schedule = self.register_pair(entity_id, report_id, source, interval_seconds, value, now=now)
        self.store.save_value(
            entity_id,
            report_id,
            value,
            source=source,
            row_count=row_count,
            source_kind="bootstrap",
            now=now,
        )
        return schedule

    def get_schedule(self, entity_id: int, report_id: str) -> Optional[SnapshotSchedule]:
        with get_session() as session:
            schedule = session.exec(
                select(SnapshotSchedule)
                .where(SnapshotSchedule.entity_id == entity_id)
                .where(SnapshotSchedule.report_id == report_id)
            ).first()
            if schedule is not None:
                session.expunge(schedule)
            return schedule

    def list_schedules(self, entity_id: Optional[int] = None, active_only: bool = False) -> list[SnapshotSchedule]:
        with get_session() as session:
            stmt = select(SnapshotSchedule).order_by(col(SnapshotSchedule.next_due_at))
            if entity_id is not None:
                stmt = stmt.where(SnapshotSchedule.entity_id == entity_id)
            if active_only:
                stmt = stmt.where(SnapshotSchedule.is_active == True)  # noqa: E712
            schedules = list(session.exec(stmt).all())
            for schedule in schedules:
                session.expunge(schedule)
            return schedules

    def get_due_schedules(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> list[SnapshotSchedule]:
        """Active schedules whose next_due_at has passed, oldest first."""
        now = resolve_now(now)
        limit = limit if limit is not None else config.snapshot_batch_limit

        with get_session() as session:
            schedules = list(
                session.exec(
                    select(SnapshotSchedule)
                    .where(SnapshotSchedule.is_active == True)  # noqa: E712
                    .where(SnapshotSchedule.next_due_at <= now)
                    .order_by(col(SnapshotSchedule.next_due_at).asc())
                    .limit(limit)
                ).all()
            )
            for schedule in schedules:
                session.expunge(schedule)
            return schedules

    def deactivate_schedule(self, schedule_id: int) -> bool:
        with get_session() as session:
            schedule = session.get(SnapshotSchedule, schedule_id)
            if schedule is None:
                return False
            schedule.is_active = False
            schedule.updated_at = resolve_now(None)
            session.add(schedule)
            logger.info(f"Deactivated snapshot schedule {schedule_id}")
            return True

    def delete_schedules_for_entity(self, entity_id: int) -> int:
        with get_session() as session:
            result = session.exec(
                delete(SnapshotSchedule).where(SnapshotSchedule.entity_id == entity_id)
            )
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_snapshot(self, schedule: SnapshotSchedule, now: Optional[datetime] = None) -> bool:
        """
        Capture, store and advance one schedule.

        Returns:
            True when a snapshot was stored and the schedule advanced.
            On any failure next_due_at is left untouched so the pair is
            retried on the next run.
        """
        now = resolve_now(now)

        if not entity_exists(schedule.entity_id):
            self.deactivate_schedule(schedule.id)
            logger.info(
                f"Schedule {schedule.id}: entity {schedule.entity_id} no longer exists, deactivated"
            )
            return False

        try:
            result = self.metric_source.fetch_metric(schedule.report_id, schedule.report_source)
        except KpiWatchError as e:
            logger.warning(f"Schedule {schedule.id}: failed to capture {schedule.report_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Schedule {schedule.id}: unexpected capture error: {e}", exc_info=True)
            return False

        try:
            self.store.save_value(
                schedule.entity_id,
                schedule.report_id,
                result.value,
                source=schedule.report_source,
                row_count=result.row_count,
                execution_time_ms=result.execution_time_ms,
                source_kind="cron",
                now=now,
            )
            self._advance(schedule.id, result.value, now)
        except Exception as e:
            logger.error(f"Schedule {schedule.id}: failed to store snapshot: {e}", exc_info=True)
            return False

        logger.info(
            f"Schedule {schedule.id}: captured {schedule.report_id} = {result.value} "
            f"({result.row_count} rows in {result.execution_time_ms}ms)"
        )

        if self.mirror_remote:
            try:
                self._mirror(schedule, result)
            except Exception as e:
                logger.error(f"Schedule {schedule.id}: snapshot mirror failed: {e}", exc_info=True)

        return True

    def _advance(self, schedule_id: int, value: float, now: datetime) -> None:
        with get_session() as session:
            row = session.get(SnapshotSchedule, schedule_id)
            if row is None:
                return
            row.last_snapshot_at = now
            row.next_due_at = now + timedelta(seconds=row.interval_seconds)
            row.last_value = value
            row.updated_at = now
            session.add(row)

    def _mirror(self, schedule: SnapshotSchedule, result: MetricResult) -> None:
        """Post the snapshot to the backend and notify on remote triggers."""
        try:
            response = self.metric_source.client.post_snapshot(
                schedule.report_id,
                schedule.report_source,
                result.value,
                result.execution_time_ms,
            )
        except BackendError as e:
            logger.warning(f"Schedule {schedule.id}: snapshot mirror failed: {e}")
            return

        alerts = response.get("alerts") if isinstance(response, dict) else None
        if not isinstance(alerts, dict):
            if alerts:
                logger.warning(f"Schedule {schedule.id}: unexpected alerts payload from backend, ignored")
            return

        triggered = alerts.get("triggered") or []
        if isinstance(triggered, list) and triggered:
            self.process_remote_triggers(schedule.entity_id, triggered, result.value)

    def process_remote_triggers(
        self, entity_id: int, triggered: list[dict[str, Any]], current_value: float
    ) -> int:
        """
        Dispatch alerts the backend reported as triggered.

        Only alerts that map to a local definition (by remote id) are
        dispatched; orphans left behind on the backend are skipped.

        Returns:
            Number of notifications sent
        """
        from kpiwatch.core.alerts.store import AlertStore

        alert_store = AlertStore()
        sent = 0

        for item in triggered:
            if not isinstance(item, dict):
                logger.warning(f"Skipping malformed remote trigger: {item!r}")
                continue
            try:
                remote_id = int(item.get("id") or item.get("alert_id") or 0)
            except (TypeError, ValueError):
                remote_id = 0
            severity = item.get("severity") or SEVERITY_WARNING
            if severity not in SEVERITIES:
                severity = SEVERITY_WARNING

            alert = alert_store.get_by_remote_id(entity_id, remote_id) if remote_id else None
            if alert is None:
                logger.debug(f"Skipping remote alert {remote_id}: no local definition")
                continue
            if not alert.enabled:
                logger.debug(f"Skipping remote alert {remote_id}: local alert {alert.id} is disabled")
                continue

            value = item.get("current_value", item.get("value", current_value))
            try:
                value = float(value)
            except (TypeError, ValueError):
                value = float(current_value)

            outcome = self.dispatcher.dispatch(alert, severity, entity_id, value)
            sent += outcome.sent_count

        return sent

    def run_due(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> SnapshotRunSummary:
        """Execute every due schedule, counting outcomes."""
        now = resolve_now(now)
        summary = SnapshotRunSummary()

        schedules = self.get_due_schedules(now=now, limit=limit)
        logger.info(f"Processing {len(schedules)} due snapshot schedule(s)")

        for schedule in schedules:
            try:
                ok = self.execute_snapshot(schedule, now=now)
            except Exception as e:
                logger.error(f"Schedule {schedule.id}: snapshot run failed: {e}", exc_info=True)
                ok = False

            if ok:
                summary.succeeded += 1
            else:
                summary.failed += 1
                summary.failed_schedule_ids.append(schedule.id)

        return summary
