"""
Alert definition storage and history.

Alert definitions are validated when saved so the scheduler never sees an
invalid rule. Saving an existing (entity, report, metric) triple updates it
in place and keeps its runtime state.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import delete
from sqlmodel import col, select

from kpiwatch.config import config
from kpiwatch.core.alerts.evaluator import Evaluation
from kpiwatch.core.constants import (
    CHANNEL_EMAIL,
    CHANNELS,
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_COOLDOWN_SECONDS,
    MAX_HISTORY_PER_ALERT,
    MIN_CHECK_INTERVAL,
    OPERATORS,
    PERCENT_OPERATORS,
    REPORT_SOURCES,
    SOURCE_PRIMARY,
    STATUS_CRITICAL,
    STATUS_OK,
    STATUS_RECOVERY,
    STATUS_WARNING,
)
from kpiwatch.core.exceptions import AlertConfigError
from kpiwatch.db.alert_models import AlertDefinition, AlertFireLog, AlertHistoryEntry
from kpiwatch.db.database import get_session
from kpiwatch.utils.clock import days_ago, resolve_now, seconds_between
from kpiwatch.utils.validators import parse_email_list, parse_id_list

logger = logging.getLogger(__name__)


@dataclass
class AlertConfig:
    """User-supplied alert settings, validated before they are stored."""

    entity_id: int
    report_id: str
    operator: str
    warning_value: Optional[float] = None
    critical_value: Optional[float] = None
    report_source: str = SOURCE_PRIMARY
    report_name: Optional[str] = None
    alert_name: Optional[str] = None
    alert_description: Optional[str] = None
    metric_field: str = "value"
    check_interval_seconds: int = DEFAULT_CHECK_INTERVAL
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS
    notify_on_warning: bool = True
    notify_on_critical: bool = True
    notify_on_recovery: bool = False
    notify_channels: list[str] = field(default_factory=lambda: ["inapp"])
    notify_targets: list[int] = field(default_factory=list)
    notify_roles: list[str] = field(default_factory=list)
    notify_emails: Union[str, list[str]] = field(default_factory=list)
    enabled: bool = True

    def validate(self) -> None:
        """
        Validate and normalize the settings in place.

        Raises:
            AlertConfigError: If the alert cannot be evaluated or delivered
        """
        self.report_id = (self.report_id or "").strip()
        if not self.report_id:
            raise AlertConfigError("Report id is required")

        if self.operator not in OPERATORS:
            raise AlertConfigError(
                f"Unknown operator '{self.operator}'. Expected one of: {', '.join(OPERATORS)}"
            )

        self.metric_field = (self.metric_field or "").strip()
        if not self.metric_field:
            raise AlertConfigError("Metric field is required")

        if self.warning_value is None and self.critical_value is None:
            raise AlertConfigError("At least one threshold (warning or critical) must be set")

        if self.operator in PERCENT_OPERATORS:
            for name, threshold in (("warning", self.warning_value), ("critical", self.critical_value)):
                if threshold is not None and threshold < 0:
                    raise AlertConfigError(
                        f"Percentage {name} threshold must be a positive magnitude, got {threshold}"
                    )

        if self.report_source not in REPORT_SOURCES:
            raise AlertConfigError(f"Unknown report source '{self.report_source}'")

        self.notify_channels = list(dict.fromkeys(c.strip().lower() for c in self.notify_channels if c))
        if not self.notify_channels:
            raise AlertConfigError("At least one notification channel is required")
        unknown = [c for c in self.notify_channels if c not in CHANNELS]
        if unknown:
            raise AlertConfigError(f"Unknown notification channel(s): {', '.join(unknown)}")

        valid_emails, invalid_emails = parse_email_list(self.notify_emails)
        if invalid_emails:
            raise AlertConfigError(f"Invalid email address(es): {', '.join(invalid_emails)}")
        self.notify_emails = valid_emails
        if CHANNEL_EMAIL in self.notify_channels and not self.notify_emails:
            raise AlertConfigError("Email channel requires at least one email address")

        self.notify_targets = parse_id_list(self.notify_targets)
        self.notify_roles = [r.strip() for r in self.notify_roles if r and r.strip()]

        self.check_interval_seconds = max(MIN_CHECK_INTERVAL, int(self.check_interval_seconds))
        if self.cooldown_seconds < 0:
            raise AlertConfigError("Cooldown cannot be negative")


@dataclass
class StatusSummary:
    """Aggregate alert state for one entity."""

    total: int = 0
    ok: int = 0
    warning: int = 0
    critical: int = 0
    highest_severity: str = STATUS_OK
    active_alerts: list[AlertDefinition] = field(default_factory=list)


def _detach(session, rows):
    for row in rows:
        session.expunge(row)
    return rows


class AlertStore:
    """
    Persistence for alert definitions and their history.

    All returned objects are detached from the session.
    """

    def save(self, alert_config: AlertConfig, now: Optional[datetime] = None) -> AlertDefinition:
        """
        Validate and upsert an alert definition.

        Raises:
            AlertConfigError: If the settings are invalid
        """
        alert_config.validate()
        now = resolve_now(now)

        with get_session() as session:
            alert = session.exec(
                select(AlertDefinition)
                .where(AlertDefinition.entity_id == alert_config.entity_id)
                .where(AlertDefinition.report_id == alert_config.report_id)
                .where(AlertDefinition.metric_field == alert_config.metric_field)
            ).first()

            if alert is None:
                alert = AlertDefinition(
                    entity_id=alert_config.entity_id,
                    report_id=alert_config.report_id,
                    metric_field=alert_config.metric_field,
                    operator=alert_config.operator,
                    current_status=STATUS_OK,
                    created_at=now,
                )
                action = "Created"
            else:
                action = "Updated"

            alert.report_source = alert_config.report_source
            alert.report_name = alert_config.report_name
            alert.alert_name = alert_config.alert_name
            alert.alert_description = alert_config.alert_description
            alert.operator = alert_config.operator
            alert.warning_value = alert_config.warning_value
            alert.critical_value = alert_config.critical_value
            alert.check_interval_seconds = alert_config.check_interval_seconds
            alert.cooldown_seconds = alert_config.cooldown_seconds
            alert.notify_on_warning = alert_config.notify_on_warning
            alert.notify_on_critical = alert_config.notify_on_critical
            alert.notify_on_recovery = alert_config.notify_on_recovery
            alert.notify_channels_json = json.dumps(alert_config.notify_channels)
            alert.notify_targets_json = json.dumps(alert_config.notify_targets)
            alert.notify_roles_json = json.dumps(alert_config.notify_roles)
            alert.notify_emails_json = json.dumps(alert_config.notify_emails)
            alert.enabled = alert_config.enabled
            alert.updated_at = now

            session.add(alert)
            session.flush()
            session.refresh(alert)
            session.expunge(alert)

        logger.info(f"{action} alert {alert.id} for entity {alert.entity_id} report {alert.report_id}")
        return alert

    def get(self, alert_id: int) -> Optional[AlertDefinition]:
        with get_session() as session:
            alert = session.get(AlertDefinition, alert_id)
            if alert is not None:
                session.expunge(alert)
            return alert

    def get_by_remote_id(self, entity_id: int, remote_id: int) -> Optional[AlertDefinition]:
        with get_session() as session:
            alert = session.exec(
                select(AlertDefinition)
                .where(AlertDefinition.entity_id == entity_id)
                .where(AlertDefinition.remote_id == remote_id)
            ).first()
            if alert is not None:
                session.expunge(alert)
            return alert

    def list_alerts(self, entity_id: Optional[int] = None, enabled_only: bool = False) -> list[AlertDefinition]:
        with get_session() as session:
            stmt = select(AlertDefinition).order_by(col(AlertDefinition.id))
            if entity_id is not None:
                stmt = stmt.where(AlertDefinition.entity_id == entity_id)
            if enabled_only:
                stmt = stmt.where(AlertDefinition.enabled == True)  # noqa: E712
            return _detach(session, list(session.exec(stmt).all()))

    def get_due_alerts(self, now: Optional[datetime] = None) -> list[AlertDefinition]:
        """Enabled alerts never checked or whose check interval has elapsed."""
        now = resolve_now(now)
        return [
            alert
            for alert in self.list_alerts(enabled_only=True)
            if alert.last_checked_at is None
            or seconds_between(alert.last_checked_at, now) >= alert.check_interval_seconds
        ]

    def set_enabled(self, alert_id: int, enabled: bool) -> bool:
        with get_session() as session:
            alert = session.get(AlertDefinition, alert_id)
            if alert is None:
                return False
            alert.enabled = enabled
            alert.updated_at = resolve_now(None)
            session.add(alert)
            return True

    def set_remote_id(self, alert_id: int, remote_id: Optional[int]) -> None:
        with get_session() as session:
            alert = session.get(AlertDefinition, alert_id)
            if alert is None:
                return
            alert.remote_id = remote_id
            session.add(alert)

    def delete(self, alert_id: int) -> bool:
        """Delete an alert together with its history and fire log."""
        with get_session() as session:
            alert = session.get(AlertDefinition, alert_id)
            if alert is None:
                return False
            session.exec(delete(AlertHistoryEntry).where(AlertHistoryEntry.alert_id == alert_id))
            session.exec(delete(AlertFireLog).where(AlertFireLog.alert_id == alert_id))
            session.delete(alert)

        logger.info(f"Deleted alert {alert_id}")
        return True

    def delete_entity_alerts(self, entity_id: int) -> int:
        """Delete every alert of an entity, with history and fire log."""
        with get_session() as session:
            session.exec(delete(AlertHistoryEntry).where(AlertHistoryEntry.entity_id == entity_id))
            session.exec(delete(AlertFireLog).where(AlertFireLog.entity_id == entity_id))
            result = session.exec(delete(AlertDefinition).where(AlertDefinition.entity_id == entity_id))
            count = result.rowcount or 0

        if count:
            logger.info(f"Deleted {count} alert(s) of entity {entity_id}")
        return count

    # ------------------------------------------------------------------
    # Check results
    # ------------------------------------------------------------------

    def record_check(
        self, alert_id: int, evaluation: Evaluation, now: Optional[datetime] = None
    ) -> Optional[int]:
        """
        Persist the outcome of one evaluation.

        Updates status, last value and check time. Writes a history row
        when the status changed; a return to ok is recorded as "recovery".

        Returns:
            The new history row id, or None when the status did not change
        """
        now = resolve_now(now)
        history_id = None

        with get_session() as session:
            alert = session.get(AlertDefinition, alert_id)
            if alert is None:
                return None

            alert.current_status = evaluation.new_status
            alert.last_value = evaluation.current_value
            alert.last_checked_at = now
            if evaluation.severity_fired:
                alert.last_alert_at = now
            alert.updated_at = now
            session.add(alert)

            if evaluation.status_changed:
                entry = AlertHistoryEntry(
                    alert_id=alert.id,
                    entity_id=alert.entity_id,
                    report_id=alert.report_id,
                    previous_status=evaluation.previous_status,
                    new_status=STATUS_RECOVERY if evaluation.is_recovery else evaluation.new_status,
                    metric_value=evaluation.current_value,
                    threshold_value=evaluation.threshold_value,
                    threshold_type=evaluation.threshold_type,
                    details=evaluation.reason[:1000],
                    created_at=now,
                )
                session.add(entry)
                session.flush()
                history_id = entry.id

        if history_id is not None:
            self.cleanup_excess_history(alert_id)
        return history_id

    def mark_notified(self, history_id: int) -> None:
        with get_session() as session:
            entry = session.get(AlertHistoryEntry, history_id)
            if entry is not None:
                entry.notified = True
                session.add(entry)

    def get_history(self, alert_id: int, limit: int = 50) -> list[AlertHistoryEntry]:
        """History of one alert, newest first."""
        with get_session() as session:
            stmt = (
                select(AlertHistoryEntry)
                .where(AlertHistoryEntry.alert_id == alert_id)
                .order_by(col(AlertHistoryEntry.created_at).desc(), col(AlertHistoryEntry.id).desc())
                .limit(limit)
            )
            return _detach(session, list(session.exec(stmt).all()))

    def get_entity_history(self, entity_id: int, limit: int = 50) -> list[AlertHistoryEntry]:
        """History across all alerts of an entity, newest first."""
        with get_session() as session:
            stmt = (
                select(AlertHistoryEntry)
                .where(AlertHistoryEntry.entity_id == entity_id)
                .order_by(col(AlertHistoryEntry.created_at).desc(), col(AlertHistoryEntry.id).desc())
                .limit(limit)
            )
            return _detach(session, list(session.exec(stmt).all()))

    def get_status_summary(self, entity_id: int) -> StatusSummary:
        summary = StatusSummary()
        for alert in self.list_alerts(entity_id=entity_id, enabled_only=True):
            summary.total += 1
            if alert.current_status == STATUS_CRITICAL:
                summary.critical += 1
                summary.active_alerts.append(alert)
                summary.highest_severity = STATUS_CRITICAL
            elif alert.current_status == STATUS_WARNING:
                summary.warning += 1
                summary.active_alerts.append(alert)
                if summary.highest_severity == STATUS_OK:
                    summary.highest_severity = STATUS_WARNING
            else:
                summary.ok += 1
        return summary

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_excess_history(self, alert_id: int, keep: int = MAX_HISTORY_PER_ALERT) -> int:
        with get_session() as session:
            keep_ids = session.exec(
                select(AlertHistoryEntry.id)
                .where(AlertHistoryEntry.alert_id == alert_id)
                .order_by(col(AlertHistoryEntry.created_at).desc(), col(AlertHistoryEntry.id).desc())
                .limit(keep)
            ).all()
            result = session.exec(
                delete(AlertHistoryEntry)
                .where(AlertHistoryEntry.alert_id == alert_id)
                .where(col(AlertHistoryEntry.id).not_in(list(keep_ids)))
            )
            return result.rowcount or 0

    def cleanup_old_history(self, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """
        Delete history rows older than the retention window.

        Returns:
            Number of rows deleted
        """
        retention_days = retention_days if retention_days is not None else config.alert_history_retention_days
        cutoff = days_ago(retention_days, now)

        with get_session() as session:
            result = session.exec(delete(AlertHistoryEntry).where(AlertHistoryEntry.created_at < cutoff))
            count = result.rowcount or 0

        if count:
            logger.info(f"Deleted {count} alert history rows older than {retention_days} days")
        return count
