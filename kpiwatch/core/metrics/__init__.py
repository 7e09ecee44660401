"""Metric capture: remote report lookup, safe query execution and value extraction."""

from kpiwatch.core.metrics.backend_client import BackendClient, report_prefix
from kpiwatch.core.metrics.extraction import (
    apply_safety_limit,
    extract_metric_value,
    validate_query,
)
from kpiwatch.core.metrics.source import MetricResult, MetricSource, QueryRunner

__all__ = [
    "BackendClient",
    "report_prefix",
    "apply_safety_limit",
    "extract_metric_value",
    "validate_query",
    "MetricResult",
    "MetricSource",
    "QueryRunner",
]
