"""Tests for remote alert synchronization."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from kpiwatch.core.alerts.reconciler import AlertReconciler, build_remote_payload
from kpiwatch.core.alerts.store import AlertStore
from kpiwatch.core.exceptions import BackendUnavailableError


@pytest.fixture(autouse=True)
def setup_db(tmp_db: Path):
    """Use tmp_db fixture from conftest for clean database per test."""
    yield


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def reconciler(client):
    return AlertReconciler(client=client, alert_store=AlertStore(), timeout=3)


class TestBuildRemotePayload:
    def test_threshold_alert(self, make_alert):
        payload = build_remote_payload(make_alert())

        assert payload == {
            "name": "Revenue",
            "condition_type": "threshold",
            "operator": "gt",
            "value": 100.0,
            "cooldown_minutes": 0,
            "is_enabled": True,
            "notification_channels": ["inapp"],
        }

    def test_decrease_percent_is_negated(self, make_alert):
        payload = build_remote_payload(make_alert(operator="decrease_pct", warning_value=15, critical_value=None))

        assert payload["condition_type"] == "change_percent"
        assert payload["operator"] == "lte"
        assert payload["value"] == -15.0

    def test_critical_only_and_email(self, make_alert):
        alert = make_alert(
            warning_value=None, critical_value=500, notify_channels=["email"], notify_emails="ops@example.com"
        )

        payload = build_remote_payload(alert)

        assert payload["value"] == 500.0
        assert payload["notification_channels"] == ["email"]


class TestReconcileEntity:
    def test_deletes_only_orphans(self, reconciler, client, make_alert, entity):
        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 10)
        client.list_alerts.return_value = [{"id": 10}, {"id": 11}, {"id": "bogus"}]

        result = reconciler.reconcile_entity(entity.id)

        assert result.checked_reports == 1
        assert result.deleted_ids == [11]
        client.list_alerts.assert_called_once_with("monthly-revenue", "primary", timeout=3)
        client.delete_alert.assert_called_once_with("monthly-revenue", "primary", 11, timeout=3)

    def test_failures_are_counted_not_raised(self, reconciler, client, make_alert, entity):
        make_alert()
        make_alert(report_id="orders")
        client.list_alerts.side_effect = [BackendUnavailableError("down"), [{"id": 5}]]
        client.delete_alert.side_effect = BackendUnavailableError("down")

        result = reconciler.reconcile_entity(entity.id)

        assert result.checked_reports == 2
        assert result.failures == 2
        assert result.deleted == 0


class TestPushAndDelete:
    def test_push_creates_and_stores_remote_id(self, reconciler, client, make_alert):
        alert = make_alert()
        client.create_alert.return_value = {"id": 77}

        assert reconciler.push_alert(alert.id) == 77
        assert AlertStore().get(alert.id).remote_id == 77

    def test_push_updates_existing(self, reconciler, client, make_alert):
        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 77)

        assert reconciler.push_alert(alert.id) == 77
        client.update_alert.assert_called_once()
        client.create_alert.assert_not_called()

    def test_push_failure_returns_none(self, reconciler, client, make_alert):
        alert = make_alert()
        client.create_alert.side_effect = BackendUnavailableError("down")

        assert reconciler.push_alert(alert.id) is None
        assert AlertStore().get(alert.id).remote_id is None

    def test_delete_is_local_even_when_remote_fails(self, reconciler, client, make_alert):
        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 77)
        client.delete_alert.side_effect = BackendUnavailableError("down")

        assert reconciler.delete_alert(alert.id) is True
        assert AlertStore().get(alert.id) is None

    def test_failed_remote_delete_is_reported_as_orphan(self, reconciler, client, make_alert, caplog):
        alert = make_alert()
        AlertStore().set_remote_id(alert.id, 77)
        client.delete_alert.side_effect = BackendUnavailableError("down")

        with caplog.at_level("WARNING", logger="kpiwatch.core.alerts.reconciler"):
            reconciler.delete_alert(alert.id)

        assert "remote alert 77 of report monthly-revenue" in caplog.text
        assert "left orphaned on the backend" in caplog.text
        assert "will retry" not in caplog.text

    def test_delete_unknown_alert(self, reconciler, client):
        assert reconciler.delete_alert(404) is False
        client.delete_alert.assert_not_called()
