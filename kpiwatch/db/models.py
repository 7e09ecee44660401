"""
SQLModel definitions for KPIWatch.

Defines the schema for:
- Entity: Dashboard instance that owns monitored reports and alerts
- Snapshot: Captured metric value for an (entity, report) pair
- SnapshotSchedule: Per-pair cadence for automated snapshots
- InAppMessage: Inbox rows written by the in-app notification channel

All timestamps are stored as aware UTC.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, Index, SQLModel, UniqueConstraint

from kpiwatch.db.types import UTCDateTime
from kpiwatch.utils.clock import utcnow


class Entity(SQLModel, table=True):
    """
    Dashboard instance (widget/block) that owns reports and alerts.

    Schedules and alerts keep pointing at an entity after it is removed;
    the schedulers detect that and deactivate or delete them.
    """

    __tablename__ = "entities"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    page_url: Optional[str] = Field(default=None, max_length=500)  # Link used in notifications

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Snapshot(SQLModel, table=True):
    """
    One captured metric value for an (entity, report) pair.

    Immutable once written. Pruned by the retention job and capped per pair.
    """

    __tablename__ = "snapshots"
    __table_args__ = (
        Index("ix_snapshots_pair_captured", "entity_id", "report_id", "captured_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: int = Field(index=True)
    report_id: str = Field(max_length=255)
    report_source: str = Field(default="primary", max_length=20)  # primary, secondary

    value: float
    row_count: Optional[int] = None
    execution_time_ms: Optional[int] = None
    source_kind: str = Field(default="cron", max_length=20)  # cron, manual, bootstrap

    captured_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class SnapshotSchedule(SQLModel, table=True):
    """
    Automated snapshot cadence for one (entity, report) pair.

    next_due_at is always advanced from the execution time,
    never from the previous due time.
    """

    __tablename__ = "snapshot_schedules"
    __table_args__ = (
        UniqueConstraint("entity_id", "report_id", name="uq_snapshot_schedule_pair"),
        Index("ix_snapshot_schedules_due", "is_active", "next_due_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: int = Field(index=True)
    report_id: str = Field(max_length=255)
    report_source: str = Field(default="primary", max_length=20)

    interval_seconds: int
    last_snapshot_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    next_due_at: datetime = Field(sa_type=UTCDateTime)
    last_value: Optional[float] = None
    is_active: bool = Field(default=True)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class InAppMessage(SQLModel, table=True):
    """In-app notification delivered to a user's inbox."""

    __tablename__ = "inapp_messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    entity_id: Optional[int] = None
    alert_id: Optional[int] = None

    subject: str = Field(max_length=255)
    body: str
    severity: str = Field(max_length=20)  # warning, critical, recovery
    is_read: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
