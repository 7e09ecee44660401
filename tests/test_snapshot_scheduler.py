"""Tests for snapshot schedule registration and execution."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from kpiwatch.core.exceptions import BackendUnavailableError, ReportNotFoundError
from kpiwatch.core.metrics.source import MetricResult
from kpiwatch.core.snapshots.scheduler import SnapshotScheduler, clamp_interval
from kpiwatch.core.snapshots.store import SnapshotStore
from kpiwatch.db.database import delete_entity

T0 = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def setup_db(tmp_db: Path):
    """Use tmp_db fixture from conftest for clean database per test."""
    yield


@pytest.fixture
def metric_source():
    source = MagicMock()
    source.fetch_metric.return_value = MetricResult(value=42.0, row_count=3, execution_time_ms=15)
    return source


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def scheduler(metric_source, dispatcher):
    return SnapshotScheduler(
        metric_source=metric_source, store=SnapshotStore(), dispatcher=dispatcher, mirror_remote=False
    )


class TestClampInterval:
    @pytest.mark.parametrize("raw,expected", [(10, 300), (3600, 3600), (10**7, 604800)])
    def test_clamps(self, raw, expected):
        assert clamp_interval(raw) == expected


class TestRegistration:
    def test_register_pair(self, scheduler, entity):
        schedule = scheduler.register_pair(entity.id, "orders", interval_seconds=3600, initial_value=5, now=T0)

        assert schedule.is_active is True
        assert schedule.last_snapshot_at == T0
        assert schedule.next_due_at == T0 + timedelta(seconds=3600)
        assert schedule.last_value == 5

    def test_register_pair_is_idempotent(self, scheduler, entity):
        first = scheduler.register_pair(entity.id, "orders", interval_seconds=3600, now=T0)
        scheduler.deactivate_schedule(first.id)

        second = scheduler.register_pair(entity.id, "orders", interval_seconds=900, now=T0 + timedelta(hours=1))

        assert second.id == first.id
        assert second.is_active is True
        assert second.interval_seconds == 900
        assert len(scheduler.list_schedules()) == 1

    def test_register_if_absent_bootstraps_once(self, scheduler, entity):
        created = scheduler.register_if_absent(entity.id, "orders", value=12, row_count=1, now=T0)
        again = scheduler.register_if_absent(entity.id, "orders", value=99, now=T0)

        assert created is not None
        assert again is None
        latest = scheduler.store.get_latest(entity.id, "orders")
        assert latest.value == 12
        assert latest.source_kind == "bootstrap"


class TestDueSchedules:
    def test_due_ordering_and_limit(self, scheduler, entity):
        scheduler.register_pair(entity.id, "late", interval_seconds=600, now=T0)
        scheduler.register_pair(entity.id, "early", interval_seconds=300, now=T0)
        scheduler.register_pair(entity.id, "later", interval_seconds=3600, now=T0)

        due = scheduler.get_due_schedules(now=T0 + timedelta(seconds=600))

        assert [s.report_id for s in due] == ["early", "late"]
        assert len(scheduler.get_due_schedules(now=T0 + timedelta(days=1), limit=1)) == 1

    def test_inactive_not_due(self, scheduler, entity):
        schedule = scheduler.register_pair(entity.id, "orders", interval_seconds=300, now=T0)
        scheduler.deactivate_schedule(schedule.id)

        assert scheduler.get_due_schedules(now=T0 + timedelta(days=1)) == []


class TestExecuteSnapshot:
    def test_advances_from_execution_time(self, scheduler, entity):
        scheduler.register_pair(entity.id, "orders", interval_seconds=3600, now=T0)
        run_at = T0 + timedelta(seconds=3601)

        summary = scheduler.run_due(now=run_at)

        schedule = scheduler.get_schedule(entity.id, "orders")
        assert summary.succeeded == 1
        assert schedule.last_snapshot_at == run_at
        assert schedule.next_due_at == run_at + timedelta(seconds=3600)
        assert schedule.last_value == 42.0
        assert scheduler.store.get_latest_value(entity.id, "orders") == 42.0

    def test_failure_keeps_due_time(self, scheduler, metric_source, entity):
        schedule = scheduler.register_pair(entity.id, "orders", interval_seconds=3600, now=T0)
        metric_source.fetch_metric.side_effect = ReportNotFoundError("orders")

        summary = scheduler.run_due(now=T0 + timedelta(hours=2))

        assert summary.failed == 1
        assert summary.failed_schedule_ids == [schedule.id]
        assert scheduler.get_schedule(entity.id, "orders").next_due_at == schedule.next_due_at

    def test_unexpected_error_is_contained(self, scheduler, metric_source, entity):
        scheduler.register_pair(entity.id, "orders", interval_seconds=3600, now=T0)
        scheduler.register_pair(entity.id, "refunds", interval_seconds=3600, now=T0)
        metric_source.fetch_metric.side_effect = [
            RuntimeError("driver crashed"),
            MetricResult(value=1.0, row_count=1, execution_time_ms=1),
        ]

        summary = scheduler.run_due(now=T0 + timedelta(hours=2))

        assert summary.succeeded == 1
        assert summary.failed == 1

    def test_missing_entity_deactivates(self, scheduler, metric_source, entity):
        scheduler.register_pair(entity.id, "orders", interval_seconds=3600, now=T0)
        delete_entity(entity.id)

        summary = scheduler.run_due(now=T0 + timedelta(hours=2))

        assert summary.failed == 1
        assert scheduler.get_schedule(entity.id, "orders").is_active is False
        metric_source.fetch_metric.assert_not_called()


class TestRemoteMirror:
    def test_mirror_failure_does_not_fail_snapshot(self, metric_source, dispatcher, entity):
        metric_source.client.post_snapshot.side_effect = BackendUnavailableError("down")
        scheduler = SnapshotScheduler(metric_source=metric_source, dispatcher=dispatcher, mirror_remote=True)
        schedule = scheduler.register_pair(entity.id, "orders", interval_seconds=3600, now=T0)

        assert scheduler.execute_snapshot(schedule, now=T0 + timedelta(hours=1)) is True
        dispatcher.dispatch.assert_not_called()

    def test_remote_triggers_dispatch_local_alerts(self, metric_source, dispatcher, make_alert, entity):
        from kpiwatch.core.alerts.store import AlertStore

        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 501)
        metric_source.client.post_snapshot.return_value = {
            "alerts": {"triggered": [{"id": 501, "severity": "critical"}, {"id": 999, "severity": "warning"}]}
        }
        dispatcher.dispatch.return_value = MagicMock(sent_count=1)
        scheduler = SnapshotScheduler(metric_source=metric_source, dispatcher=dispatcher, mirror_remote=True)
        schedule = scheduler.register_pair(entity.id, "monthly-revenue", interval_seconds=3600, now=T0)

        scheduler.execute_snapshot(schedule, now=T0 + timedelta(hours=1))

        dispatcher.dispatch.assert_called_once()
        args = dispatcher.dispatch.call_args.args
        assert args[0].id == alert.id
        assert args[1] == "critical"
        assert args[3] == 42.0

    def test_invalid_remote_severity_falls_back_to_warning(self, scheduler, dispatcher, make_alert, entity):
        from kpiwatch.core.alerts.store import AlertStore

        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 501)
        dispatcher.dispatch.return_value = MagicMock(sent_count=1)

        sent = scheduler.process_remote_triggers(entity.id, [{"id": 501, "severity": "fatal"}], 10)

        assert sent == 1
        assert dispatcher.dispatch.call_args.args[1] == "warning"

    def test_malformed_alerts_payload_does_not_stop_batch(self, metric_source, dispatcher, entity):
        metric_source.client.post_snapshot.return_value = {"success": True, "alerts": [{"id": 1}]}
        scheduler = SnapshotScheduler(metric_source=metric_source, dispatcher=dispatcher, mirror_remote=True)
        scheduler.register_pair(entity.id, "orders", interval_seconds=3600, now=T0)
        scheduler.register_pair(entity.id, "refunds", interval_seconds=3600, now=T0)

        summary = scheduler.run_due(now=T0 + timedelta(hours=2))

        assert summary.succeeded == 2
        assert summary.failed == 0
        assert metric_source.client.post_snapshot.call_count == 2
        dispatcher.dispatch.assert_not_called()
        for report_id in ("orders", "refunds"):
            schedule = scheduler.get_schedule(entity.id, report_id)
            assert schedule.next_due_at == T0 + timedelta(hours=3)

    def test_non_dict_triggers_are_skipped(self, scheduler, dispatcher, make_alert, entity):
        from kpiwatch.core.alerts.store import AlertStore

        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 501)
        dispatcher.dispatch.return_value = MagicMock(sent_count=1)

        sent = scheduler.process_remote_triggers(entity.id, ["501", None, {"id": 501}], 10)

        assert sent == 1
        dispatcher.dispatch.assert_called_once()

    def test_trigger_dispatch_error_keeps_snapshot(self, metric_source, dispatcher, make_alert, entity):
        from kpiwatch.core.alerts.store import AlertStore

        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 501)
        metric_source.client.post_snapshot.return_value = {"alerts": {"triggered": [{"id": 501}]}}
        dispatcher.dispatch.side_effect = RuntimeError("smtp exploded")
        scheduler = SnapshotScheduler(metric_source=metric_source, dispatcher=dispatcher, mirror_remote=True)
        schedule = scheduler.register_pair(entity.id, "monthly-revenue", interval_seconds=3600, now=T0)

        assert scheduler.execute_snapshot(schedule, now=T0 + timedelta(hours=1)) is True
        assert SnapshotStore().get_latest_value(entity.id, "monthly-revenue") == 42.0

    def test_disabled_local_alert_is_not_dispatched(self, scheduler, dispatcher, make_alert, entity):
        from kpiwatch.core.alerts.store import AlertStore

        alert = make_alert()
        store = AlertStore()
        store.set_remote_id(alert.id, 501)
        store.set_enabled(alert.id, False)

        sent = scheduler.process_remote_triggers(entity.id, [{"id": 501, "severity": "critical"}], 10)

        assert sent == 0
        dispatcher.dispatch.assert_not_called()
