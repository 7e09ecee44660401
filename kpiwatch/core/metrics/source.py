"""
Metric source: turn a report id into one KPI number.

Primary reports resolve to a report definition whose SQL is run locally
against the reporting database. Secondary reports either carry their
value directly or supply SQL that is run the same way.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from kpiwatch.config import config
from kpiwatch.core.constants import SOURCE_PRIMARY, SOURCE_SECONDARY
from kpiwatch.core.exceptions import QueryExecutionError, ReportNotFoundError
from kpiwatch.core.metrics.backend_client import BackendClient
from kpiwatch.core.metrics.extraction import (
    apply_safety_limit,
    extract_metric_value,
    is_numeric,
    validate_query,
)

logger = logging.getLogger(__name__)

SECONDARY_SQL_KEYS = ("sql_query", "sql", "generated_sql")


@dataclass
class MetricResult:
    """A single metric reading."""

    value: float
    row_count: int
    execution_time_ms: int


class QueryRunner:
    """
    Runs validated, read-only report SQL on the reporting database.

    Defaults to KPIWATCH_REPORTING_DB_URL, falling back to the
    application database.
    """

    def __init__(self, engine: Optional[Engine] = None, row_limit: Optional[int] = None):
        self._engine = engine
        self.row_limit = row_limit if row_limit is not None else config.query_row_limit

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            if config.reporting_db_url:
                self._engine = create_engine(config.reporting_db_url)
            else:
                from kpiwatch.db.database import get_engine

                self._engine = get_engine()
        return self._engine

    def run(self, sql: str) -> list[dict[str, Any]]:
        """
        Validate, limit and execute report SQL.

        Raises:
            ReportValidationError: If the SQL is not a single read-only query
            QueryExecutionError: If the database rejects the query
        """
        statement = apply_safety_limit(validate_query(sql), self.row_limit)

        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(statement))
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            raise QueryExecutionError(f"Report query failed: {e}") from e


class MetricSource:
    """Fetches the current metric value for a report."""

    def __init__(
        self,
        client: Optional[BackendClient] = None,
        query_runner: Optional[QueryRunner] = None,
    ):
        self.client = client or BackendClient()
        self.query_runner = query_runner or QueryRunner()

    def fetch_metric(self, report_id: str, source: str = SOURCE_PRIMARY) -> MetricResult:
        """
        Fetch the metric value for a report.

        Args:
            report_id: Report slug
            source: "primary" or "secondary"

        Returns:
            MetricResult with value, row count and execution time

        Raises:
            MetricSourceError: Subclass describing why no value was obtained
            BackendError: If the remote backend could not be reached
        """
        start = time.monotonic()

        if source == SOURCE_SECONDARY:
            value, row_count = self._fetch_secondary(report_id)
        else:
            value, row_count = self._fetch_primary(report_id)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug(f"Report {report_id} ({source}): value={value} rows={row_count} in {elapsed_ms}ms")
        return MetricResult(value=value, row_count=row_count, execution_time_ms=elapsed_ms)

    def fetch_rows(self, report_id: str, source: str = SOURCE_PRIMARY) -> list[dict[str, Any]]:
        """Fetch the full result rows of a report (used by previews)."""
        if source == SOURCE_SECONDARY:
            report = self.client.get_report(report_id, SOURCE_SECONDARY)
            return self.query_runner.run(self._secondary_sql(report_id, report))
        return self.query_runner.run(self._primary_sql(report_id))

    def _primary_sql(self, report_id: str) -> str:
        report = self.client.get_report(report_id, SOURCE_PRIMARY)
        template_id = report.get("report_template_id") or report.get("name")
        if not template_id:
            raise ReportNotFoundError(report_id, "no template id")

        definition = self.client.find_report_definition(template_id)
        if not definition or not definition.get("sqlquery"):
            raise ReportNotFoundError(report_id, f"no definition for template {template_id}")

        return definition["sqlquery"]

    def _fetch_primary(self, report_id: str) -> tuple[float, int]:
        rows = self.query_runner.run(self._primary_sql(report_id))
        return extract_metric_value(rows), len(rows)

    @staticmethod
    def _secondary_sql(report_id: str, report: dict) -> str:
        for key in SECONDARY_SQL_KEYS:
            if report.get(key):
                return report[key]
        raise ReportNotFoundError(report_id, "report has no SQL query")

    def _fetch_secondary(self, report_id: str) -> tuple[float, int]:
        report = self.client.get_report(report_id, SOURCE_SECONDARY)

        if is_numeric(report.get("value")):
            return float(report["value"]), int(report.get("row_count") or 1)

        rows = self.query_runner.run(self._secondary_sql(report_id, report))
        return extract_metric_value(rows), len(rows)
