"""
Pytest configuration and shared fixtures for KPIWatch tests.

This module provides common fixtures used across all test modules,
including database fixtures, entity and alert factories, and mock helpers.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

# Fixed reference time for scheduling tests (aware UTC, as stored)
T0 = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# ==============================================================================
# Autouse Fixtures - Run automatically for all tests
# ==============================================================================


@pytest.fixture(autouse=True)
def set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from a real backend or SMTP server."""
    from kpiwatch.config import config

    monkeypatch.setenv("KPIWATCH_DB_PATH", ":memory:")
    monkeypatch.setattr(config, "api_key", None)
    monkeypatch.setattr(config, "smtp_host", None)
    monkeypatch.setattr(config, "admin_user_ids", [])
    monkeypatch.setattr(config, "site_name", "KPIWatch")


# ==============================================================================
# Database Fixtures
# ==============================================================================


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path."""
    return tmp_path / "test_kpiwatch.db"


@pytest.fixture
def tmp_db(tmp_db_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """
    Set up a temporary database for testing.

    Monkeypatches the database path and initializes the schema.
    """
    monkeypatch.setenv("KPIWATCH_DB_PATH", str(tmp_db_path))

    # CRITICAL: Also patch the config singleton directly since it reads env at import time
    from kpiwatch.config import config

    monkeypatch.setattr(config, "db_path", tmp_db_path)

    # Reset any existing engine to force creation with new path
    from kpiwatch.db.database import reset_engine

    reset_engine()

    from kpiwatch.db import init_db

    init_db()

    yield tmp_db_path

    # Cleanup
    reset_engine()
    if tmp_db_path.exists():
        tmp_db_path.unlink()


@pytest.fixture
def entity(tmp_db):
    """A dashboard entity with a page URL."""
    from kpiwatch.db.database import create_entity

    return create_entity("Sales dashboard", page_url="https://dash.example.com/sales")


@pytest.fixture
def make_alert(entity):
    """Factory that saves an alert for the test entity."""
    from kpiwatch.core.alerts.store import AlertConfig, AlertStore

    def _make(**overrides):
        settings = {
            "entity_id": entity.id,
            "report_id": "monthly-revenue",
            "operator": "gt",
            "warning_value": 100.0,
            "critical_value": 200.0,
            "alert_name": "Revenue",
            "notify_targets": [7],
            "notify_on_recovery": True,
        }
        settings.update(overrides)
        return AlertStore().save(AlertConfig(**settings), now=T0)

    return _make


# ==============================================================================
# Mock Helpers
# ==============================================================================


@pytest.fixture
def recording_channel():
    """In-memory notification channel that records every send."""
    from kpiwatch.core.notifications.channels import NotificationChannel

    class RecordingChannel(NotificationChannel):
        name = "inapp"

        def __init__(self):
            self.sent = []

        def send(self, message, recipient, entity_id=None, alert_id=None):
            self.sent.append((message, recipient))

    return RecordingChannel()


@pytest.fixture
def mock_response():
    """Factory for requests.Response-like mocks."""

    def _make(status_code=200, json_data=None):
        response = MagicMock()
        response.status_code = status_code
        response.content = b"" if json_data is None else b"x"
        if isinstance(json_data, Exception):
            response.json.side_effect = json_data
        else:
            response.json.return_value = json_data
        return response

    return _make


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
