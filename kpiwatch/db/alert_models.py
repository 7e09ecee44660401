"""
Alert database models for KPIWatch.

Defines the schema for:
- AlertDefinition: Threshold rule on a report metric
- AlertHistoryEntry: Record of every status change for audit and review
- AlertFireLog: Which severities already notified in the current cycle
"""

import json
from datetime import datetime
from typing import Optional

from sqlmodel import Field, Index, SQLModel, UniqueConstraint

from kpiwatch.db.types import UTCDateTime
from kpiwatch.utils.clock import utcnow


def _load_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


class AlertDefinition(SQLModel, table=True):
    """
    Threshold rule on one metric of one report owned by an entity.

    Supported operators:
    - gt, lt, eq, gte, lte: compare the current value with the threshold
    - change_pct, increase_pct, decrease_pct: compare the percent change
      against the previous snapshot

    List-valued settings (channels, targets, roles, emails) are stored
    as JSON strings and exposed through properties.
    """

    __tablename__ = "alert_definitions"
    __table_args__ = (
        UniqueConstraint(
            "entity_id", "report_id", "metric_field", name="uq_alert_entity_report_metric"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: int = Field(index=True)
    report_id: str = Field(max_length=255)
    report_source: str = Field(default="primary", max_length=20)  # primary, secondary
    report_name: Optional[str] = Field(default=None, max_length=255)

    alert_name: Optional[str] = Field(default=None, max_length=255)
    alert_description: Optional[str] = Field(default=None, max_length=1000)

    # Condition
    metric_field: str = Field(default="value", max_length=100)
    operator: str = Field(max_length=20)
    warning_value: Optional[float] = None
    critical_value: Optional[float] = None

    # Scheduling
    check_interval_seconds: int = Field(default=3600)
    cooldown_seconds: int = Field(default=3600)  # Stored for the remote copy only

    # Notification settings
    notify_on_warning: bool = Field(default=True)
    notify_on_critical: bool = Field(default=True)
    notify_on_recovery: bool = Field(default=False)
    notify_channels_json: str = Field(default='["inapp"]')
    notify_targets_json: str = Field(default="[]")
    notify_roles_json: str = Field(default="[]")
    notify_emails_json: str = Field(default="[]")

    # State
    enabled: bool = Field(default=True)
    current_status: str = Field(default="ok", max_length=20)  # ok, warning, critical
    last_value: Optional[float] = None
    last_checked_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_alert_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    remote_id: Optional[int] = Field(default=None, index=True)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def notify_channels(self) -> list[str]:
        return [str(c) for c in _load_list(self.notify_channels_json)]

    @property
    def notify_targets(self) -> list[int]:
        targets = []
        for item in _load_list(self.notify_targets_json):
            try:
                targets.append(int(item))
            except (TypeError, ValueError):
                continue
        return targets

    @property
    def notify_roles(self) -> list[str]:
        return [str(r) for r in _load_list(self.notify_roles_json)]

    @property
    def notify_emails(self) -> list[str]:
        return [str(e) for e in _load_list(self.notify_emails_json)]

    @property
    def display_name(self) -> str:
        """Name used in messages and listings."""
        return self.alert_name or self.report_name or self.report_id


class AlertHistoryEntry(SQLModel, table=True):
    """
    Record of an alert status change.

    Append-only. new_status is "recovery" when the alert returned to ok.
    """

    __tablename__ = "alert_history"
    __table_args__ = (
        Index("ix_alert_history_alert_created", "alert_id", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    alert_id: int = Field(index=True)
    entity_id: int = Field(index=True)
    report_id: str = Field(max_length=255)

    previous_status: str = Field(max_length=20)
    new_status: str = Field(max_length=20)  # warning, critical, recovery
    metric_value: float
    threshold_value: Optional[float] = None
    threshold_type: Optional[str] = Field(default=None, max_length=20)  # warning, critical
    details: Optional[str] = Field(default=None, max_length=1000)
    notified: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class AlertFireLog(SQLModel, table=True):
    """
    One row per (entity, alert, severity) that has already notified.

    Recovery clears the warning/critical rows so the next breach notifies again.
    """

    __tablename__ = "alert_fire_log"
    __table_args__ = (
        UniqueConstraint("entity_id", "alert_id", "severity", name="uq_fire_log_severity"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: int = Field(index=True)
    alert_id: int = Field(index=True)
    severity: str = Field(max_length=20)  # warning, critical, recovery
    report_id: Optional[str] = Field(default=None, max_length=255)
    alert_name: Optional[str] = Field(default=None, max_length=255)
    triggered_value: Optional[float] = None
    threshold_value: Optional[float] = None

    fired_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
