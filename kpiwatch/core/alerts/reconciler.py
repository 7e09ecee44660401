"""
Remote alert synchronization.

Local alert definitions are the source of truth. Each one can have a
copy on the report backend (tracked by remote_id). Reconciliation
removes remote alerts that no longer have a local counterpart; all
remote work here is best effort and never raises.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from kpiwatch.config import config
from kpiwatch.core.alerts.store import AlertStore
from kpiwatch.core.constants import (
    CHANNEL_EMAIL,
    OP_CHANGE_PERCENT,
    OP_DECREASE_PERCENT,
    OP_GREATER_EQUAL,
    OP_INCREASE_PERCENT,
    OP_LESS_EQUAL,
    PERCENT_OPERATORS,
)
from kpiwatch.core.exceptions import BackendError
from kpiwatch.core.metrics.backend_client import BackendClient
from kpiwatch.db.alert_models import AlertDefinition

logger = logging.getLogger(__name__)

# Percent operators map to a remote change_percent condition
_REMOTE_PERCENT_OPERATORS = {
    OP_CHANGE_PERCENT: OP_GREATER_EQUAL,
    OP_INCREASE_PERCENT: OP_GREATER_EQUAL,
    OP_DECREASE_PERCENT: OP_LESS_EQUAL,
}


def build_remote_payload(alert: AlertDefinition) -> dict:
    """
    Translate a local definition into the backend alert payload.

    Remote cooldown is disabled: the local fire log decides when to notify.
    """
    threshold = alert.warning_value if alert.warning_value is not None else alert.critical_value
    threshold = float(threshold or 0)

    if alert.operator in PERCENT_OPERATORS:
        condition_type = "change_percent"
        operator = _REMOTE_PERCENT_OPERATORS[alert.operator]
        if alert.operator == OP_DECREASE_PERCENT:
            threshold = -abs(threshold)
    else:
        condition_type = "threshold"
        operator = alert.operator

    return {
        "name": alert.display_name,
        "condition_type": condition_type,
        "operator": operator,
        "value": threshold,
        "cooldown_minutes": 0,
        "is_enabled": bool(alert.enabled),
        "notification_channels": ["email"] if CHANNEL_EMAIL in alert.notify_channels else ["inapp"],
    }


@dataclass
class ReconcileResult:
    """Outcome of reconciling one entity."""

    checked_reports: int = 0
    deleted: int = 0
    failures: int = 0
    deleted_ids: list[int] = field(default_factory=list)


class AlertReconciler:
    """Keeps remote alert copies in line with local definitions."""

    def __init__(
        self,
        client: Optional[BackendClient] = None,
        alert_store: Optional[AlertStore] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client or BackendClient()
        self.alert_store = alert_store or AlertStore()
        self.timeout = timeout if timeout is not None else config.reconcile_timeout_seconds

    def reconcile_entity(self, entity_id: int) -> ReconcileResult:
        """
        Delete remote alerts of the entity's reports that are unknown locally.

        Failures are logged and counted, never raised.
        """
        result = ReconcileResult()
        alerts = self.alert_store.list_alerts(entity_id=entity_id)

        reports: dict[tuple[str, str], set[int]] = {}
        for alert in alerts:
            known = reports.setdefault((alert.report_id, alert.report_source), set())
            if alert.remote_id is not None:
                known.add(int(alert.remote_id))

        for (report_id, source), local_ids in reports.items():
            result.checked_reports += 1
            try:
                remote_alerts = self.client.list_alerts(report_id, source, timeout=self.timeout)
            except BackendError as e:
                result.failures += 1
                logger.warning(f"Could not list remote alerts for {report_id}: {e}")
                continue

            for remote in remote_alerts:
                try:
                    remote_id = int(remote.get("id"))
                except (TypeError, ValueError):
                    continue
                if remote_id in local_ids:
                    continue

                try:
                    self.client.delete_alert(report_id, source, remote_id, timeout=self.timeout)
                except BackendError as e:
                    result.failures += 1
                    logger.warning(f"Could not delete orphaned remote alert {remote_id} of {report_id}: {e}")
                    continue

                result.deleted += 1
                result.deleted_ids.append(remote_id)
                logger.info(f"Deleted orphaned remote alert {remote_id} for report {report_id}")

        return result

    def push_alert(self, alert_id: int) -> Optional[int]:
        """
        Create or update the remote copy of a local alert.

        Returns:
            The remote id, or None if the alert is unknown or the push failed
        """
        alert = self.alert_store.get(alert_id)
        if alert is None:
            return None

        payload = build_remote_payload(alert)
        try:
            if alert.remote_id is not None:
                self.client.update_alert(alert.report_id, alert.report_source, alert.remote_id, payload)
                return alert.remote_id

            remote = self.client.create_alert(alert.report_id, alert.report_source, payload)
        except BackendError as e:
            logger.warning(f"Could not push alert {alert_id} to backend: {e}")
            return None

        remote_id = int(remote["id"])
        self.alert_store.set_remote_id(alert_id, remote_id)
        logger.info(f"Alert {alert_id} pushed to backend as {remote_id}")
        return remote_id

    def delete_alert(self, alert_id: int) -> bool:
        """
        Delete an alert remotely (best effort) and then locally.

        Returns:
            True if the local alert existed and was deleted
        """
        alert = self.alert_store.get(alert_id)
        if alert is None:
            return False

        if alert.remote_id is not None:
            try:
                self.client.delete_alert(
                    alert.report_id, alert.report_source, alert.remote_id, timeout=self.timeout
                )
            except BackendError as e:
                logger.warning(
                    f"Could not delete remote alert {alert.remote_id} of report {alert.report_id}; "
                    f"it is left orphaned on the backend: {e}"
                )

        return self.alert_store.delete(alert_id)
