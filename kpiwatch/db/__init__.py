"""
Database module for KPIWatch.

Provides SQLModel definitions and connection management for snapshot and alert state.
"""

from kpiwatch.db.database import (
    create_entity,
    delete_entity,
    entity_exists,
    get_engine,
    get_entity,
    get_session,
    init_db,
    list_entities,
    reset_engine,
)
from kpiwatch.db.models import Entity, InAppMessage, Snapshot, SnapshotSchedule
from kpiwatch.db.alert_models import AlertDefinition, AlertFireLog, AlertHistoryEntry

__all__ = [
    # Models
    "Entity",
    "Snapshot",
    "SnapshotSchedule",
    "InAppMessage",
    "AlertDefinition",
    "AlertHistoryEntry",
    "AlertFireLog",
    # Database
    "get_engine",
    "get_session",
    "init_db",
    "reset_engine",
    "get_entity",
    "entity_exists",
    "create_entity",
    "list_entities",
    "delete_entity",
]
