"""Tests for MetricSource and QueryRunner."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text

from kpiwatch.core.exceptions import QueryExecutionError, ReportNotFoundError, ReportValidationError
from kpiwatch.core.metrics.source import MetricSource, QueryRunner


@pytest.fixture
def reporting_engine():
    """In-memory reporting database with a small orders table."""
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE orders (id INTEGER PRIMARY KEY, amount REAL, region TEXT)"))
        conn.execute(
            text("INSERT INTO orders (amount, region) VALUES (10, 'EMEA'), (20, 'EMEA'), (30, 'APAC')")
        )
    yield engine
    engine.dispose()


@pytest.fixture
def runner(reporting_engine):
    return QueryRunner(engine=reporting_engine, row_limit=1000)


@pytest.fixture
def client():
    return MagicMock()


class TestQueryRunner:
    def test_returns_dict_rows(self, runner):
        rows = runner.run("SELECT SUM(amount) AS total FROM orders")

        assert rows == [{"total": 60.0}]

    def test_safety_limit_applied(self, reporting_engine):
        runner = QueryRunner(engine=reporting_engine, row_limit=2)

        assert len(runner.run("SELECT * FROM orders")) == 2

    def test_rejects_writes(self, runner):
        with pytest.raises(ReportValidationError):
            runner.run("DELETE FROM orders")

    def test_database_errors_are_wrapped(self, runner):
        with pytest.raises(QueryExecutionError):
            runner.run("SELECT * FROM missing_table")


class TestPrimaryReports:
    def test_runs_definition_sql(self, client, runner):
        client.get_report.return_value = {"report_template_id": "Revenue by region"}
        client.find_report_definition.return_value = {
            "name": "Revenue by region",
            "sqlquery": "SELECT SUM(amount) AS revenue FROM orders WHERE region = 'EMEA'",
        }

        result = MetricSource(client=client, query_runner=runner).fetch_metric("revenue", "primary")

        assert result.value == 30.0
        assert result.row_count == 1
        assert result.execution_time_ms >= 0
        client.find_report_definition.assert_called_once_with("Revenue by region")

    def test_missing_definition(self, client, runner):
        client.get_report.return_value = {"name": "Gone"}
        client.find_report_definition.return_value = None

        with pytest.raises(ReportNotFoundError, match="no definition"):
            MetricSource(client=client, query_runner=runner).fetch_metric("revenue")

    def test_fetch_rows(self, client, runner):
        client.get_report.return_value = {"name": "All orders"}
        client.find_report_definition.return_value = {"sqlquery": "SELECT * FROM orders"}

        rows = MetricSource(client=client, query_runner=runner).fetch_rows("orders")

        assert len(rows) == 3
        assert set(rows[0]) == {"id", "amount", "region"}


class TestSecondaryReports:
    def test_remote_value_used_directly(self, client, runner):
        client.get_report.return_value = {"value": "17.5", "row_count": 4}

        result = MetricSource(client=client, query_runner=runner).fetch_metric("ai-kpi", "secondary")

        assert result.value == 17.5
        assert result.row_count == 4

    def test_remote_sql_runs_locally(self, client, runner):
        client.get_report.return_value = {"generated_sql": "SELECT * FROM orders WHERE region = 'EMEA'"}

        result = MetricSource(client=client, query_runner=runner).fetch_metric("ai-kpi", "secondary")

        assert result.value == 2.0
        assert result.row_count == 2

    def test_no_sql(self, client, runner):
        client.get_report.return_value = {"title": "empty"}

        with pytest.raises(ReportNotFoundError, match="no SQL"):
            MetricSource(client=client, query_runner=runner).fetch_metric("ai-kpi", "secondary")
