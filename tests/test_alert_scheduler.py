"""Tests for the periodic alert check run."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from kpiwatch.core.alerts.dispatcher import NotificationDispatcher
from kpiwatch.core.alerts.scheduler import AlertScheduler
from kpiwatch.core.alerts.store import AlertStore
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.database import create_entity, delete_entity

T0 = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


@pytest.fixture(autouse=True)
def setup_db(tmp_db: Path):
    """Use tmp_db fixture from conftest for clean database per test."""
    yield


@pytest.fixture
def snapshots():
    return SnapshotStore()


@pytest.fixture
def scheduler(recording_channel, snapshots):
    dispatcher = NotificationDispatcher(channels={"inapp": recording_channel})
    return AlertScheduler(alert_store=AlertStore(), snapshot_store=snapshots, dispatcher=dispatcher)


def severities(channel):
    return [message.severity for message, _ in channel.sent]


class TestRunDueChecks:
    def test_warning_then_critical(self, scheduler, snapshots, recording_channel, make_alert, entity):
        alert = make_alert()

        snapshots.save_value(entity.id, alert.report_id, 150, now=T0)
        first = scheduler.run_due_checks(now=T0)

        snapshots.save_value(entity.id, alert.report_id, 250, now=T0 + HOUR)
        second = scheduler.run_due_checks(now=T0 + HOUR)

        assert first.triggered == 1 and first.notified == 1
        assert second.triggered == 1 and second.notified == 1
        assert severities(recording_channel) == ["warning", "critical"]
        assert AlertStore().get(alert.id).current_status == "critical"

    def test_no_double_notification(self, scheduler, snapshots, recording_channel, make_alert, entity):
        alert = make_alert()

        for step, value in enumerate([150, 160, 170]):
            snapshots.save_value(entity.id, alert.report_id, value, now=T0 + step * HOUR)
            scheduler.run_due_checks(now=T0 + step * HOUR)

        assert severities(recording_channel) == ["warning"]

    def test_ok_warning_ok_cycle(self, scheduler, snapshots, recording_channel, make_alert, entity):
        alert = make_alert()

        for step, value in enumerate([150, 50]):
            snapshots.save_value(entity.id, alert.report_id, value, now=T0 + step * HOUR)
            scheduler.run_due_checks(now=T0 + step * HOUR)

        history = AlertStore().get_history(alert.id)
        assert [h.new_status for h in history] == ["recovery", "warning"]
        assert all(h.notified for h in history)
        assert severities(recording_channel) == ["warning", "recovery"]

    def test_warning_fires_again_after_recovery(self, scheduler, snapshots, recording_channel, make_alert, entity):
        alert = make_alert(notify_on_recovery=False)

        for step, value in enumerate([150, 50, 150]):
            snapshots.save_value(entity.id, alert.report_id, value, now=T0 + step * HOUR)
            scheduler.run_due_checks(now=T0 + step * HOUR)

        assert severities(recording_channel) == ["warning", "warning"]

    def test_downgrade_within_cycle_is_silent(self, scheduler, snapshots, recording_channel, make_alert, entity):
        alert = make_alert()

        for step, value in enumerate([150, 250, 150]):
            snapshots.save_value(entity.id, alert.report_id, value, now=T0 + step * HOUR)
            scheduler.run_due_checks(now=T0 + step * HOUR)

        assert severities(recording_channel) == ["warning", "critical"]
        assert AlertStore().get(alert.id).current_status == "warning"

    def test_not_due_alerts_are_skipped(self, scheduler, snapshots, make_alert, entity):
        alert = make_alert()
        snapshots.save_value(entity.id, alert.report_id, 150, now=T0)
        scheduler.run_due_checks(now=T0)

        summary = scheduler.run_due_checks(now=T0 + timedelta(minutes=30))

        assert summary.processed == 0

    def test_alert_without_snapshot(self, scheduler, recording_channel, make_alert):
        make_alert()

        summary = scheduler.run_due_checks(now=T0)

        assert summary.processed == 1
        assert summary.triggered == 0
        assert recording_channel.sent == []

    def test_percentage_alert_uses_previous_snapshot(self, scheduler, snapshots, recording_channel, make_alert, entity):
        alert = make_alert(operator="decrease_pct", warning_value=10, critical_value=50)

        snapshots.save_value(entity.id, alert.report_id, 100, now=T0 - HOUR)
        snapshots.save_value(entity.id, alert.report_id, 80, now=T0)
        scheduler.run_due_checks(now=T0)

        assert severities(recording_channel) == ["warning"]
        message = recording_channel.sent[0][0]
        assert message.previous_value == 100

    def test_deleted_entity_removes_alerts(self, scheduler, make_alert, entity):
        make_alert()
        delete_entity(entity.id)

        summary = scheduler.run_due_checks(now=T0)

        assert summary.processed == 0
        assert AlertStore().list_alerts() == []

    def test_entity_failure_is_isolated(self, scheduler, snapshots, recording_channel, make_alert, entity):
        make_alert()
        other = create_entity("Ops dashboard")
        make_alert(entity_id=other.id)
        snapshots.save_value(entity.id, "monthly-revenue", 150, now=T0)
        snapshots.save_value(other.id, "monthly-revenue", 150, now=T0)

        original = scheduler._check_entity

        def flaky(entity_id, alerts, now, summary):
            if entity_id == entity.id:
                raise RuntimeError("database locked")
            return original(entity_id, alerts, now, summary)

        with patch.object(scheduler, "_check_entity", side_effect=flaky):
            summary = scheduler.run_due_checks(now=T0)

        assert summary.errors == 1
        assert summary.triggered == 1
        assert len(recording_channel.sent) == 1
