"""
Alert threshold evaluation.

Pure functions: given an alert definition, the current value and an
optional baseline, decide the new status and which severity (if any)
the transition fires. No database or network access happens here.

Supported operators:
- gt, lt, eq, gte, lte: compare the value with the threshold directly
- change_pct: absolute percent change is at least the threshold
- increase_pct: percent change is at least the threshold
- decrease_pct: percent change is at most minus the threshold
"""

from dataclasses import dataclass
from typing import Optional

from kpiwatch.core.constants import (
    FLOAT_TOLERANCE,
    OP_CHANGE_PERCENT,
    OP_DECREASE_PERCENT,
    OP_EQUALS,
    OP_GREATER_EQUAL,
    OP_GREATER_THAN,
    OP_INCREASE_PERCENT,
    OP_LESS_EQUAL,
    OP_LESS_THAN,
    OPERATOR_LABELS,
    PERCENT_OPERATORS,
    SEVERITY_CRITICAL,
    SEVERITY_RECOVERY,
    SEVERITY_WARNING,
    STATUS_CRITICAL,
    STATUS_OK,
    STATUS_WARNING,
)


@dataclass
class Evaluation:
    """Result of evaluating one alert against one value."""

    new_status: str
    severity_fired: Optional[str]
    reason: str
    previous_status: str
    current_value: float
    previous_value: Optional[float] = None
    threshold_value: Optional[float] = None
    threshold_type: Optional[str] = None  # warning, critical
    percent_change: Optional[float] = None

    @property
    def status_changed(self) -> bool:
        return self.new_status != self.previous_status

    @property
    def is_recovery(self) -> bool:
        return self.status_changed and self.new_status == STATUS_OK


def check_condition(operator: str, value: float, threshold: float) -> bool:
    """Direct threshold comparison."""
    if operator == OP_GREATER_THAN:
        return value > threshold
    if operator == OP_LESS_THAN:
        return value < threshold
    if operator == OP_EQUALS:
        return abs(value - threshold) < FLOAT_TOLERANCE
    if operator == OP_GREATER_EQUAL:
        return value >= threshold
    if operator == OP_LESS_EQUAL:
        return value <= threshold
    return False


def check_percentage_condition(operator: str, percent_change: float, threshold: float) -> bool:
    """Percent-change comparison; thresholds are positive magnitudes."""
    if operator == OP_CHANGE_PERCENT:
        return abs(percent_change) >= threshold
    if operator == OP_INCREASE_PERCENT:
        return percent_change >= threshold
    if operator == OP_DECREASE_PERCENT:
        return percent_change <= -threshold
    return False


def percent_change(current_value: float, previous_value: Optional[float]) -> Optional[float]:
    """
    Percent change against a baseline.

    Returns:
        None when there is no usable baseline (missing or effectively zero)
    """
    if previous_value is None or abs(previous_value) < FLOAT_TOLERANCE:
        return None
    return (current_value - previous_value) / abs(previous_value) * 100


def _fired_severity(alert, previous_status: str, new_status: str) -> Optional[str]:
    if new_status == previous_status:
        return None
    if new_status == STATUS_CRITICAL:
        return SEVERITY_CRITICAL if alert.notify_on_critical else None
    if new_status == STATUS_WARNING:
        return SEVERITY_WARNING if alert.notify_on_warning else None
    if new_status == STATUS_OK and previous_status in (STATUS_WARNING, STATUS_CRITICAL):
        return SEVERITY_RECOVERY if alert.notify_on_recovery else None
    return None


def evaluate(alert, current_value: float, previous_value: Optional[float] = None) -> Evaluation:
    """
    Evaluate an alert definition against the current value.

    Critical is checked before warning; unset thresholds are skipped.
    Notification is edge-triggered: a severity fires only when the
    status changes and the alert opted in to that severity.

    Args:
        alert: AlertDefinition (or any object with the same fields)
        current_value: Latest metric value
        previous_value: Baseline for percentage operators

    Returns:
        Evaluation describing the transition
    """
    previous_status = alert.current_status or STATUS_OK
    current_value = float(current_value)
    operator = alert.operator

    if operator in PERCENT_OPERATORS:
        change = percent_change(current_value, previous_value)
        if change is None:
            # Without a baseline the status cannot move in either direction
            return Evaluation(
                new_status=previous_status,
                severity_fired=None,
                reason="No baseline value available for percentage comparison",
                previous_status=previous_status,
                current_value=current_value,
                previous_value=previous_value,
            )

        for threshold, threshold_type, status in (
            (alert.critical_value, "critical", STATUS_CRITICAL),
            (alert.warning_value, "warning", STATUS_WARNING),
        ):
            if threshold is not None and check_percentage_condition(operator, change, threshold):
                return Evaluation(
                    new_status=status,
                    severity_fired=_fired_severity(alert, previous_status, status),
                    reason=(
                        f"{change:.1f}% change exceeds {threshold_type} threshold of {threshold:.1f}%"
                    ),
                    previous_status=previous_status,
                    current_value=current_value,
                    previous_value=previous_value,
                    threshold_value=threshold,
                    threshold_type=threshold_type,
                    percent_change=change,
                )

        return Evaluation(
            new_status=STATUS_OK,
            severity_fired=_fired_severity(alert, previous_status, STATUS_OK),
            reason=f"{change:.1f}% change is within thresholds",
            previous_status=previous_status,
            current_value=current_value,
            previous_value=previous_value,
            percent_change=change,
        )

    label = OPERATOR_LABELS.get(operator, "meets condition of")
    for threshold, threshold_type, status in (
        (alert.critical_value, "critical", STATUS_CRITICAL),
        (alert.warning_value, "warning", STATUS_WARNING),
    ):
        if threshold is not None and check_condition(operator, current_value, threshold):
            return Evaluation(
                new_status=status,
                severity_fired=_fired_severity(alert, previous_status, status),
                reason=f"Value {current_value:.2f} {label} threshold {threshold:.2f}",
                previous_status=previous_status,
                current_value=current_value,
                previous_value=previous_value,
                threshold_value=threshold,
                threshold_type=threshold_type,
                percent_change=percent_change(current_value, previous_value),
            )

    return Evaluation(
        new_status=STATUS_OK,
        severity_fired=_fired_severity(alert, previous_status, STATUS_OK),
        reason=f"Value {current_value:.2f} is within thresholds",
        previous_status=previous_status,
        current_value=current_value,
        previous_value=previous_value,
        percent_change=percent_change(current_value, previous_value),
    )
