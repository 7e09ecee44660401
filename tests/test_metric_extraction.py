"""Tests for query safety and metric extraction."""

from decimal import Decimal

import pytest

from kpiwatch.core.exceptions import ReportValidationError
from kpiwatch.core.metrics.extraction import (
    apply_safety_limit,
    extract_metric_value,
    is_numeric,
    validate_query,
)


class TestExtractMetricValue:
    def test_no_rows_is_zero(self):
        assert extract_metric_value([]) == 0.0

    def test_single_aggregate(self):
        assert extract_metric_value([{"total": 42}]) == 42.0

    def test_many_rows_counts_rows(self):
        rows = [{"id": i, "amount": i * 10} for i in range(5)]

        assert extract_metric_value(rows) == 5.0

    def test_skips_id_and_text_columns(self):
        row = {"id": 9, "region": "EMEA", "revenue": "1250.5"}

        assert extract_metric_value([row]) == 1250.5

    def test_falls_back_to_numeric_id(self):
        assert extract_metric_value([{"id": 17, "label": "n/a"}]) == 17.0

    def test_single_row_without_numbers(self):
        assert extract_metric_value([{"name": "only"}]) == 1.0

    def test_booleans_are_not_metrics(self):
        assert extract_metric_value([{"active": True, "count": 3}]) == 3.0

    def test_non_finite_values_are_skipped(self):
        assert extract_metric_value([{"ratio": "nan", "total": 12}]) == 12.0


class TestIsNumeric:
    @pytest.mark.parametrize("value", [1, 2.5, Decimal("3.1"), "42", "-0.5"])
    def test_numeric(self, value):
        assert is_numeric(value) is True

    @pytest.mark.parametrize(
        "value", [None, True, "abc", "", [1], "nan", "inf", "-Infinity", float("nan"), Decimal("NaN")]
    )
    def test_not_numeric(self, value):
        assert is_numeric(value) is False


class TestValidateQuery:
    def test_strips_trailing_semicolon(self):
        assert validate_query("  SELECT 1;  ") == "SELECT 1"

    def test_with_queries_allowed(self):
        sql = "WITH t AS (SELECT 1 AS n) SELECT n FROM t"

        assert validate_query(sql) == sql

    def test_replace_function_allowed(self):
        sql = "SELECT REPLACE(name, 'a', 'b') FROM users"

        assert validate_query(sql) == sql

    @pytest.mark.parametrize(
        "sql,message",
        [
            ("", "no SQL"),
            ("UPDATE users SET a = 1", "SELECT or WITH"),
            ("SELECT 1; DROP TABLE users", "single statement"),
            ("WITH x AS (DELETE FROM users RETURNING id) SELECT * FROM x", "DELETE"),
        ],
    )
    def test_rejected(self, sql, message):
        with pytest.raises(ReportValidationError, match=message):
            validate_query(sql)


class TestApplySafetyLimit:
    def test_appends_limit(self):
        assert apply_safety_limit("SELECT * FROM orders", 500) == "SELECT * FROM orders LIMIT 500"

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM orders LIMIT 10",
            "SELECT * FROM orders limit :max_rows",
            "SELECT * FROM orders LIMIT ?",
        ],
    )
    def test_existing_limit_kept(self, sql):
        assert apply_safety_limit(sql, 500) == sql
