"""
Alert notification dispatch.

Delivers a fired severity through every channel the alert enabled and
records it in the fire log. The fire log makes notification
once-per-cycle: a severity already logged for (entity, alert) is not
sent again until the cycle is reset by a recovery.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import delete
from sqlmodel import col, select

from kpiwatch.config import config
from kpiwatch.core.constants import (
    CHANNEL_EMAIL,
    CHANNEL_INAPP,
    SEVERITY_CRITICAL,
    SEVERITY_RECOVERY,
    SEVERITY_WARNING,
)
from kpiwatch.core.exceptions import ChannelNotConfiguredError, NotificationError
from kpiwatch.core.notifications.channels import EmailChannel, InAppChannel, NotificationChannel
from kpiwatch.core.notifications.messages import build_alert_message
from kpiwatch.db.alert_models import AlertFireLog
from kpiwatch.db.database import get_entity, get_session
from kpiwatch.utils.clock import days_ago, resolve_now

logger = logging.getLogger(__name__)

# (entity_id, role names) -> user ids; role lookup lives outside this package
RecipientResolver = Callable[[int, list[str]], list[int]]


def no_role_resolver(entity_id: int, roles: list[str]) -> list[int]:
    return []


@dataclass
class DispatchResult:
    """Outcome of one dispatch call."""

    sent_count: int = 0
    skipped: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.sent_count > 0


class NotificationDispatcher:
    """
    Sends alert notifications and maintains the fire log.

    Each channel and each recipient is attempted independently;
    failures are collected on the result and never raised.
    """

    def __init__(
        self,
        channels: Optional[dict[str, NotificationChannel]] = None,
        recipient_resolver: Optional[RecipientResolver] = None,
        admin_user_ids: Optional[list[int]] = None,
    ):
        self.channels = channels if channels is not None else {
            CHANNEL_INAPP: InAppChannel(),
            CHANNEL_EMAIL: EmailChannel(),
        }
        self.recipient_resolver = recipient_resolver or no_role_resolver
        self.admin_user_ids = admin_user_ids if admin_user_ids is not None else config.admin_user_ids

    def resolve_recipients(self, alert, entity_id: int) -> list[int]:
        """
        User ids to notify: explicit targets plus role members.

        Falls back to the configured admins when nobody is selected.
        """
        user_ids = list(alert.notify_targets)
        if alert.notify_roles:
            try:
                role_users = self.recipient_resolver(entity_id, alert.notify_roles)
            except Exception as e:
                logger.warning(f"Role resolution failed for alert {alert.id}: {e}")
                role_users = []
            for user_id in role_users:
                if user_id not in user_ids:
                    user_ids.append(user_id)

        if not user_ids:
            user_ids = list(self.admin_user_ids)
        return user_ids

    def dispatch(
        self,
        alert,
        severity: str,
        entity_id: int,
        current_value: float,
        previous_value: Optional[float] = None,
        evaluation=None,
    ) -> DispatchResult:
        """
        Notify recipients that an alert fired at a severity.

        Args:
            alert: AlertDefinition that fired
            severity: warning, critical or recovery
            entity_id: Owning entity
            current_value: Value that triggered the transition
            previous_value: Earlier value, for direction and magnitude
            evaluation: Optional Evaluation with threshold and reason

        Returns:
            DispatchResult; skipped is True when the fire log already
            holds this severity for the alert
        """
        result = DispatchResult()

        if alert.id is not None and self.is_already_fired(entity_id, alert.id, severity):
            logger.debug(f"Alert {alert.id} already fired {severity} for entity {entity_id}, skipping")
            result.skipped = True
            return result

        entity = get_entity(entity_id)
        url = entity.page_url if entity and entity.page_url else None
        message = build_alert_message(
            alert, severity, current_value, previous_value=previous_value, evaluation=evaluation, url=url
        )

        for channel_name in alert.notify_channels:
            channel = self.channels.get(channel_name)
            if channel is None or not channel.is_configured():
                result.errors.append(str(ChannelNotConfiguredError(channel_name)))
                continue

            if channel_name == CHANNEL_EMAIL:
                recipients = alert.notify_emails
            else:
                recipients = self.resolve_recipients(alert, entity_id)

            for recipient in recipients:
                try:
                    channel.send(message, recipient, entity_id=entity_id, alert_id=alert.id)
                    result.sent_count += 1
                except NotificationError as e:
                    logger.warning(f"Alert {alert.id}: {e}")
                    result.errors.append(str(e))

        if result.sent_count > 0:
            if alert.id is not None:
                self.log_fired(
                    entity_id,
                    alert.id,
                    severity,
                    report_id=alert.report_id,
                    alert_name=alert.display_name,
                    triggered_value=current_value,
                    threshold_value=message.threshold_value,
                )
            logger.info(
                f"Alert '{alert.display_name}' ({severity}) - {result.sent_count} notification(s) sent"
            )
        elif result.errors:
            logger.warning(f"Alert {alert.id} ({severity}) not delivered: {'; '.join(result.errors)}")

        return result

    # ------------------------------------------------------------------
    # Fire log
    # ------------------------------------------------------------------

    def is_already_fired(self, entity_id: int, alert_id: int, severity: str) -> bool:
        with get_session() as session:
            return (
                session.exec(
                    select(AlertFireLog.id)
                    .where(AlertFireLog.entity_id == entity_id)
                    .where(AlertFireLog.alert_id == alert_id)
                    .where(AlertFireLog.severity == severity)
                ).first()
                is not None
            )

    def log_fired(
        self,
        entity_id: int,
        alert_id: int,
        severity: str,
        report_id: Optional[str] = None,
        alert_name: Optional[str] = None,
        triggered_value: Optional[float] = None,
        threshold_value: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Record a delivered severity and reset the opposite side of the cycle.

        A recovery clears warning and critical so they can fire again;
        a warning or critical clears recovery.
        """
        if severity == SEVERITY_RECOVERY:
            cleared = [SEVERITY_WARNING, SEVERITY_CRITICAL, SEVERITY_RECOVERY]
        else:
            cleared = [SEVERITY_RECOVERY, severity]

        with get_session() as session:
            session.exec(
                delete(AlertFireLog)
                .where(AlertFireLog.entity_id == entity_id)
                .where(AlertFireLog.alert_id == alert_id)
                .where(col(AlertFireLog.severity).in_(cleared))
            )
            session.add(
                AlertFireLog(
                    entity_id=entity_id,
                    alert_id=alert_id,
                    severity=severity,
                    report_id=report_id,
                    alert_name=alert_name,
                    triggered_value=triggered_value,
                    threshold_value=threshold_value,
                    fired_at=resolve_now(now),
                )
            )

    def clear_cycle(self, entity_id: int, alert_id: int) -> int:
        """Clear warning/critical entries so the next breach notifies again."""
        with get_session() as session:
            result = session.exec(
                delete(AlertFireLog)
                .where(AlertFireLog.entity_id == entity_id)
                .where(AlertFireLog.alert_id == alert_id)
                .where(col(AlertFireLog.severity).in_([SEVERITY_WARNING, SEVERITY_CRITICAL]))
            )
            return result.rowcount or 0

    def clear_alert_log(self, entity_id: int, alert_id: int) -> int:
        with get_session() as session:
            result = session.exec(
                delete(AlertFireLog)
                .where(AlertFireLog.entity_id == entity_id)
                .where(AlertFireLog.alert_id == alert_id)
            )
            return result.rowcount or 0

    def clear_entity_logs(self, entity_id: int) -> int:
        with get_session() as session:
            result = session.exec(delete(AlertFireLog).where(AlertFireLog.entity_id == entity_id))
            return result.rowcount or 0

    def cleanup_old_logs(self, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """
        Delete fire log entries older than the retention window.

        Returns:
            Number of entries deleted
        """
        retention_days = retention_days if retention_days is not None else config.fire_log_retention_days
        cutoff = days_ago(retention_days, now)

        with get_session() as session:
            result = session.exec(delete(AlertFireLog).where(AlertFireLog.fired_at < cutoff))
            count = result.rowcount or 0

        if count:
            logger.info(f"Deleted {count} fire log entries older than {retention_days} days")
        return count
