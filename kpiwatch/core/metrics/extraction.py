"""
Metric extraction and query safety helpers.

Report SQL is only ever run read-only; these helpers validate it,
append a safety LIMIT, and reduce a result set to one KPI number.
"""

import math
import re
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from kpiwatch.core.exceptions import ReportValidationError

DEFAULT_ROW_LIMIT = 100000

_LIMIT_PATTERN = re.compile(r"\bLIMIT\s+(\d+|:\w+|\?)", re.IGNORECASE)
_FORBIDDEN_PATTERN = re.compile(
    r"\b(INSERT|UPDATE|DELETE|DROP|ALTER|CREATE|TRUNCATE|GRANT|REVOKE|ATTACH|PRAGMA)\b",
    re.IGNORECASE,
)
_STATEMENT_START = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)


def validate_query(sql: Optional[str]) -> str:
    """
    Check that report SQL is a single read-only statement.

    Args:
        sql: Raw SQL from a report definition

    Returns:
        The SQL with surrounding whitespace and a trailing semicolon removed

    Raises:
        ReportValidationError: If the SQL is empty, not a SELECT/WITH query,
            contains several statements or a data-modifying keyword
    """
    if not sql or not sql.strip():
        raise ReportValidationError("Report has no SQL query")

    cleaned = sql.strip().rstrip(";").strip()

    if ";" in cleaned:
        raise ReportValidationError("Report SQL must be a single statement")

    if not _STATEMENT_START.match(cleaned):
        raise ReportValidationError("Report SQL must start with SELECT or WITH")

    match = _FORBIDDEN_PATTERN.search(cleaned)
    if match:
        raise ReportValidationError(
            f"Report SQL contains forbidden keyword: {match.group(1).upper()}"
        )

    return cleaned


def apply_safety_limit(sql: str, limit: int = DEFAULT_ROW_LIMIT) -> str:
    """
    Append a LIMIT clause unless the query already has one.

    A placeholder limit (":name" or "?") counts as present.
    """
    if _LIMIT_PATTERN.search(sql):
        return sql
    return f"{sql.rstrip().rstrip(';')} LIMIT {limit}"


def is_numeric(value: Any) -> bool:
    """True for finite numbers and numeric strings, never for booleans."""
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, (int, float, Decimal, str, bytes)):
        try:
            return math.isfinite(float(value))
        except (ValueError, OverflowError):
            return False
    return False


def extract_metric_value(rows: Sequence[Mapping[str, Any]]) -> float:
    """
    Reduce a report result set to a single KPI value.

    - No rows: 0
    - One row: the first numeric column other than ``id``, falling back to a
      numeric ``id`` (aggregate queries often alias the count that way)
    - Otherwise: the number of rows

    Args:
        rows: Result rows as mappings of column name to value

    Returns:
        The metric value
    """
    row_count = len(rows)

    if row_count == 0:
        return 0.0

    if row_count == 1:
        values = dict(rows[0])

        for key, value in values.items():
            if key == "id":
                continue
            if is_numeric(value):
                return float(value)

        if is_numeric(values.get("id")):
            return float(values["id"])

    return float(row_count)
