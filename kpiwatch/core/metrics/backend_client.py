"""
Client for the remote report and alert backend.

Talks JSON over HTTPS with a bearer API key. Every request carries an
explicit timeout. Failures are mapped onto the BackendError hierarchy:
timeouts, connection errors and 5xx responses are transient
(BackendUnavailableError); 4xx responses and payloads with
``success: false`` are BackendResponseError.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from kpiwatch.config import config
from kpiwatch.core.constants import SOURCE_SECONDARY
from kpiwatch.core.exceptions import (
    BackendResponseError,
    BackendUnavailableError,
    ReportNotFoundError,
)

logger = logging.getLogger(__name__)

PRIMARY_PREFIX = "/wizard-reports"
SECONDARY_PREFIX = "/ai-reports"


def report_prefix(source: str) -> str:
    """Endpoint prefix for a report source."""
    return SECONDARY_PREFIX if source == SOURCE_SECONDARY else PRIMARY_PREFIX


class BackendClient:
    """
    Thin wrapper around the remote backend API.

    Uses a shared requests.Session so connections are reused across a
    scheduler run.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or config.backend_url).rstrip("/")
        self.api_key = api_key if api_key is not None else config.api_key
        self.timeout = timeout if timeout is not None else config.http_timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        if self.api_key:
            self.session.headers["Authorization"] = f"Bearer {self.api_key}"

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        effective_timeout = timeout if timeout is not None else self.timeout

        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=effective_timeout,
            )
        except requests.Timeout as e:
            raise BackendUnavailableError(f"{method} {path} timed out after {effective_timeout}s") from e
        except requests.ConnectionError as e:
            raise BackendUnavailableError(f"{method} {path} connection failed: {e}") from e
        except requests.RequestException as e:
            raise BackendUnavailableError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        if status >= 500:
            raise BackendUnavailableError(f"{method} {path} returned HTTP {status}", status_code=status)
        if status >= 400:
            raise BackendResponseError(f"{method} {path} returned HTTP {status}", status_code=status)

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise BackendResponseError(f"{method} {path} returned invalid JSON", status_code=status) from e

        if not isinstance(data, dict):
            raise BackendResponseError(f"{method} {path} returned unexpected payload", status_code=status)

        if data.get("success") is False:
            message = data.get("message") or "unsuccessful response"
            raise BackendResponseError(f"{method} {path}: {message}", status_code=status)

        logger.debug(f"{method} {path} -> HTTP {status}")
        return data

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_report(self, report_id: str, source: str) -> dict[str, Any]:
        """
        Fetch a report by slug.

        Raises:
            ReportNotFoundError: If the backend has no such report
        """
        path = f"{report_prefix(source)}/{quote(report_id, safe='')}"
        try:
            data = self._request("GET", path)
        except BackendResponseError as e:
            if e.status_code == 404:
                raise ReportNotFoundError(report_id) from e
            raise

        report = data.get("report")
        if not report:
            raise ReportNotFoundError(report_id, "empty report payload")
        return report

    def get_report_definitions(self) -> list[dict[str, Any]]:
        """Fetch all report definitions (name plus SQL)."""
        headers = {"X-API-Key": self.api_key} if self.api_key else None
        data = self._request("GET", "/reports/definitions", headers=headers)
        return data.get("data") or []

    def find_report_definition(self, name: str) -> Optional[dict[str, Any]]:
        """Find a report definition by its (trimmed) name."""
        wanted = str(name).strip()
        for definition in self.get_report_definitions():
            if str(definition.get("name") or "").strip() == wanted:
                return definition
        return None

    def post_snapshot(
        self,
        report_id: str,
        source: str,
        row_count: float,
        execution_time_ms: int,
        snapshot_source: str = "cron",
    ) -> dict[str, Any]:
        """
        Mirror a captured value to the backend.

        Returns:
            Response payload; ``alerts.triggered`` lists remote alerts that fired
        """
        path = f"{report_prefix(source)}/{quote(report_id, safe='')}/snapshots"
        return self._request(
            "POST",
            path,
            payload={
                "row_count": row_count,
                "execution_time_ms": execution_time_ms,
                "source": snapshot_source,
            },
        )

    # ------------------------------------------------------------------
    # Remote alerts
    # ------------------------------------------------------------------

    def _alerts_path(self, report_id: str, source: str) -> str:
        return f"{report_prefix(source)}/{quote(report_id, safe='')}/alerts"

    def list_alerts(
        self, report_id: str, source: str, timeout: Optional[float] = None
    ) -> list[dict[str, Any]]:
        """List remote alerts attached to a report."""
        data = self._request("GET", self._alerts_path(report_id, source), timeout=timeout)
        return data.get("alerts") or []

    def create_alert(self, report_id: str, source: str, payload: dict) -> dict[str, Any]:
        """Create a remote alert and return it (including its id)."""
        data = self._request("POST", self._alerts_path(report_id, source), payload=payload)
        alert = data.get("alert")
        if not alert or "id" not in alert:
            raise BackendResponseError("Alert creation returned no alert id")
        return alert

    def update_alert(
        self, report_id: str, source: str, remote_id: int, payload: dict
    ) -> dict[str, Any]:
        path = f"{self._alerts_path(report_id, source)}/{remote_id}"
        return self._request("PUT", path, payload=payload)

    def delete_alert(
        self, report_id: str, source: str, remote_id: int, timeout: Optional[float] = None
    ) -> None:
        path = f"{self._alerts_path(report_id, source)}/{remote_id}"
        self._request("DELETE", path, timeout=timeout)
