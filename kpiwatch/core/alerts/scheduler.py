"""
Periodic alert checking.

Evaluates every due alert against the latest stored snapshot of its
report, persists the transition and dispatches notifications. Designed
to be called via CLI commands or cron jobs.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from kpiwatch.core.alerts.dispatcher import NotificationDispatcher
from kpiwatch.core.alerts.evaluator import evaluate
from kpiwatch.core.alerts.store import AlertStore
from kpiwatch.core.constants import PERCENT_OPERATORS
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.alert_models import AlertDefinition
from kpiwatch.db.database import entity_exists
from kpiwatch.utils.clock import resolve_now

logger = logging.getLogger(__name__)


@dataclass
class CheckRunSummary:
    """Counters for one alert check run."""

    processed: int = 0
    triggered: int = 0
    errors: int = 0
    notified: int = 0


class AlertScheduler:
    """Runs due alert checks, one entity at a time."""

    def __init__(
        self,
        alert_store: Optional[AlertStore] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.alert_store = alert_store or AlertStore()
        self.snapshot_store = snapshot_store or SnapshotStore()
        self.dispatcher = dispatcher or NotificationDispatcher()

    def run_due_checks(self, now: Optional[datetime] = None) -> CheckRunSummary:
        """
        Check every enabled alert whose interval has elapsed.

        A failure inside one entity is logged and counted; the remaining
        entities are still processed.
        """
        now = resolve_now(now)
        summary = CheckRunSummary()

        by_entity: dict[int, list[AlertDefinition]] = defaultdict(list)
        for alert in self.alert_store.get_due_alerts(now):
            by_entity[alert.entity_id].append(alert)

        logger.info(f"Checking {sum(len(a) for a in by_entity.values())} due alert(s) across {len(by_entity)} entities")

        for entity_id, alerts in by_entity.items():
            try:
                self._check_entity(entity_id, alerts, now, summary)
            except Exception as e:
                summary.errors += 1
                logger.error(f"Alert check failed for entity {entity_id}: {e}", exc_info=True)

        logger.info(
            f"Alert check complete: processed={summary.processed} triggered={summary.triggered} "
            f"notified={summary.notified} errors={summary.errors}"
        )
        return summary

    def _check_entity(
        self, entity_id: int, alerts: list[AlertDefinition], now: datetime, summary: CheckRunSummary
    ) -> None:
        if not entity_exists(entity_id):
            removed = self.alert_store.delete_entity_alerts(entity_id)
            logger.info(f"Entity {entity_id} no longer exists, removed {removed} alert(s)")
            return

        latest: dict[str, Optional[float]] = {}
        previous: dict[str, Optional[float]] = {}

        for alert in alerts:
            summary.processed += 1

            if alert.report_id not in latest:
                latest[alert.report_id] = self.snapshot_store.get_latest_value(entity_id, alert.report_id)
            value = latest[alert.report_id]
            if value is None:
                logger.debug(f"Alert {alert.id}: no snapshot for report {alert.report_id}, skipping")
                continue

            previous_value = None
            if alert.operator in PERCENT_OPERATORS:
                if alert.report_id not in previous:
                    previous[alert.report_id] = self.snapshot_store.get_previous_value(
                        entity_id, alert.report_id
                    )
                previous_value = previous[alert.report_id]

            self.check_alert(alert, value, previous_value, now, summary)

    def check_alert(
        self,
        alert: AlertDefinition,
        value: float,
        previous_value: Optional[float],
        now: datetime,
        summary: Optional[CheckRunSummary] = None,
    ):
        """
        Evaluate one alert, persist the result and notify.

        Returns:
            The Evaluation
        """
        summary = summary if summary is not None else CheckRunSummary()
        evaluation = evaluate(alert, value, previous_value)
        history_id = self.alert_store.record_check(alert.id, evaluation, now=now)

        if evaluation.is_recovery:
            self.dispatcher.clear_cycle(alert.entity_id, alert.id)

        if evaluation.severity_fired:
            summary.triggered += 1
            result = self.dispatcher.dispatch(
                alert,
                evaluation.severity_fired,
                alert.entity_id,
                value,
                previous_value=previous_value if previous_value is not None else alert.last_value,
                evaluation=evaluation,
            )
            if result.delivered:
                summary.notified += 1
                if history_id is not None:
                    self.alert_store.mark_notified(history_id)

        return evaluation
