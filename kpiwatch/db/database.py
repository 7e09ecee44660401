"""
Database connection management for KPIWatch.

Provides SQLite connection with context managers for session handling.
Follows singleton pattern for the database engine.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from sqlmodel import Session, SQLModel, create_engine, select

from kpiwatch.config import config

logger = logging.getLogger(__name__)

# Global engine (singleton)
_engine = None
_engine_lock = threading.Lock()


def get_engine():
    """
    Get or create database engine (singleton pattern).

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine

    if _engine is None:
        with _engine_lock:
            # Double-check locking pattern
            if _engine is None:
                db_path = config.db_path
                db_path.parent.mkdir(parents=True, exist_ok=True)

                _engine = create_engine(
                    f"sqlite:///{db_path}",
                    echo=False,
                    connect_args={"check_same_thread": False},
                )
                logger.info(f"Database engine initialized: {db_path}")

    return _engine


def init_db() -> None:
    """
    Initialize database tables.

    Creates all tables defined in the models if they don't exist.
    Safe to call multiple times.
    """
    # Import models to ensure they're registered with SQLModel metadata
    from kpiwatch.db.models import (  # noqa: F401
        Entity,
        InAppMessage,
        Snapshot,
        SnapshotSchedule,
    )
    from kpiwatch.db.alert_models import (  # noqa: F401
        AlertDefinition,
        AlertFireLog,
        AlertHistoryEntry,
    )

    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Database tables initialized")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Get database session with automatic cleanup.

    Usage:
        with get_session() as session:
            session.add(Entity(name="Sales dashboard"))
            # Commits automatically on success

    Notes:
        - Automatically commits on successful exit
        - Rolls back on exception
        - Always closes the session
    """
    engine = get_engine()
    session = Session(engine)

    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error(
            "Database transaction failed, rolling back: %s",
            str(e),
            exc_info=True,
        )
        session.rollback()
        raise
    finally:
        session.close()


def reset_engine() -> None:
    """
    Reset the global engine instance.

    Primarily useful for testing.
    """
    global _engine

    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
            logger.info("Database engine reset")


def get_entity(entity_id: int) -> Optional["Entity"]:
    """
    Fetch an entity by id.

    Returns:
        Detached Entity instance or None if it no longer exists.
    """
    from kpiwatch.db.models import Entity

    with get_session() as session:
        entity = session.get(Entity, entity_id)
        if entity is not None:
            session.refresh(entity)
            session.expunge(entity)
        return entity


def entity_exists(entity_id: int) -> bool:
    """Check whether the dashboard entity is still present."""
    from kpiwatch.db.models import Entity

    with get_session() as session:
        return session.exec(select(Entity.id).where(Entity.id == entity_id)).first() is not None


def create_entity(name: str, page_url: Optional[str] = None) -> "Entity":
    """Create a dashboard entity and return it detached."""
    from kpiwatch.db.models import Entity

    with get_session() as session:
        entity = Entity(name=name, page_url=page_url)
        session.add(entity)
        session.flush()
        session.refresh(entity)
        session.expunge(entity)
        logger.info(f"Created entity {entity.id}: {name}")
        return entity


def list_entities() -> list["Entity"]:
    """All entities, oldest first, detached."""
    from kpiwatch.db.models import Entity

    with get_session() as session:
        entities = list(session.exec(select(Entity).order_by(Entity.id)).all())
        for entity in entities:
            session.expunge(entity)
        return entities


def delete_entity(entity_id: int) -> bool:
    """
    Delete the entity row only.

    Owned alerts, schedules and snapshots are removed by their stores.
    """
    from kpiwatch.db.models import Entity

    with get_session() as session:
        entity = session.get(Entity, entity_id)
        if entity is None:
            return False
        session.delete(entity)

    logger.info(f"Deleted entity {entity_id}")
    return True
