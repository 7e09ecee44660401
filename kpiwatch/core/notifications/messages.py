"""
Alert notification content.

Builds the subject, plain text body and HTML body that every channel
sends. Channels only differ in how they deliver it.
"""

from dataclasses import dataclass, field
from html import escape
from typing import Optional

from kpiwatch.config import config
from kpiwatch.core.constants import SEVERITY_CRITICAL, SEVERITY_RECOVERY, SEVERITY_WARNING

SEVERITY_INTROS = {
    SEVERITY_CRITICAL: "A critical alert has been triggered that requires your immediate attention.",
    SEVERITY_WARNING: "A warning alert has been triggered that may require your attention.",
    SEVERITY_RECOVERY: "A previously triggered alert has now recovered to normal levels.",
}

SEVERITY_COLORS = {
    SEVERITY_CRITICAL: {"bg": "#f8d7da", "border": "#f5c6cb", "text": "#721c24"},
    SEVERITY_WARNING: {"bg": "#fff3cd", "border": "#ffeeba", "text": "#856404"},
    SEVERITY_RECOVERY: {"bg": "#d4edda", "border": "#c3e6cb", "text": "#155724"},
}


def format_value(value: Optional[float]) -> str:
    """Render a metric value without trailing zeros."""
    if value is None:
        return "n/a"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def describe_change(current_value: float, previous_value: Optional[float]) -> Optional[str]:
    """
    Human readable change, e.g. "increased by 25 (+12.5%) from 200".

    Returns:
        None when there is no previous value
    """
    if previous_value is None:
        return None

    delta = current_value - previous_value
    if abs(delta) < 1e-9:
        return f"unchanged from {format_value(previous_value)}"

    direction = "increased" if delta > 0 else "decreased"
    text = f"{direction} by {format_value(abs(delta))}"
    if previous_value != 0:
        percent = delta / abs(previous_value) * 100
        text += f" ({percent:+.1f}%)"
    return f"{text} from {format_value(previous_value)}"


@dataclass
class AlertMessage:
    """Rendered notification for one alert firing."""

    alert_name: str
    severity: str
    summary: str
    report_name: Optional[str] = None
    current_value: Optional[float] = None
    previous_value: Optional[float] = None
    threshold_value: Optional[float] = None
    url: Optional[str] = None
    details: list[tuple[str, str]] = field(default_factory=list)

    @property
    def subject(self) -> str:
        label = "Recovered" if self.severity == SEVERITY_RECOVERY else self.severity.capitalize()
        return f"[{config.site_name}] {label}: {self.alert_name}"

    @property
    def short(self) -> str:
        return f"{self.alert_name}: {self.summary}"

    def text_body(self) -> str:
        lines = ["Hello,", "", SEVERITY_INTROS.get(self.severity, ""), ""]
        lines.append(f"Alert: {self.alert_name}")
        lines.append(f"Message: {self.summary}")
        for label, value in self.details:
            lines.append(f"{label}: {value}")
        if self.url:
            lines.extend(["", f"View metric: {self.url}"])
        lines.extend(["", "---", f"This notification was sent from {config.site_name}."])
        return "\n".join(lines)

    def html_body(self) -> str:
        colors = SEVERITY_COLORS.get(self.severity, SEVERITY_COLORS[SEVERITY_WARNING])
        rows = "".join(
            f'<tr><td style="padding: 6px 0; width: 40%;"><strong>{escape(label)}</strong></td>'
            f'<td style="padding: 6px 0;">{escape(value)}</td></tr>'
            for label, value in self.details
        )
        parts = [
            '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">',
            f'<div style="background-color: {colors["bg"]}; border: 1px solid {colors["border"]}; '
            f'border-radius: 8px; padding: 20px; margin-bottom: 20px;">',
            f'<h2 style="color: {colors["text"]}; margin: 0 0 10px 0;">{escape(self.alert_name)}</h2>',
            f'<p style="color: {colors["text"]}; margin: 0;">{escape(self.summary)}</p>',
            "</div>",
        ]
        if rows:
            parts.append(f'<table style="width: 100%; font-size: 14px;">{rows}</table>')
        if self.url:
            parts.append(f'<p><a href="{escape(self.url)}">View metric</a></p>')
        parts.append(
            f'<p style="font-size: 12px; color: #6c757d;">'
            f"This notification was sent from {escape(config.site_name)}.</p>"
        )
        parts.append("</div>")
        return "".join(parts)


def build_alert_message(
    alert,
    severity: str,
    current_value: float,
    previous_value: Optional[float] = None,
    evaluation=None,
    url: Optional[str] = None,
) -> AlertMessage:
    """
    Build the notification for an alert firing at a severity.

    Args:
        alert: AlertDefinition that fired
        severity: warning, critical or recovery
        current_value: Value that triggered the transition
        previous_value: Earlier value, used to describe direction and size
        evaluation: Optional Evaluation carrying the threshold and reason
        url: Link back to the dashboard
    """
    threshold = None
    summary = None
    if evaluation is not None:
        threshold = evaluation.threshold_value
        summary = evaluation.reason
        if previous_value is None:
            previous_value = evaluation.previous_value

    if threshold is None and severity == SEVERITY_CRITICAL:
        threshold = alert.critical_value
    elif threshold is None and severity == SEVERITY_WARNING:
        threshold = alert.warning_value

    if not summary:
        if severity == SEVERITY_RECOVERY:
            summary = f"Value {format_value(current_value)} is back within thresholds"
        else:
            summary = f"Value {format_value(current_value)} breached the {severity} threshold"

    details = []
    report_name = alert.report_name or alert.report_id
    details.append(("Report", report_name))
    details.append(("Current value", format_value(current_value)))
    details.append(("Severity", severity))
    if threshold is not None:
        details.append(("Threshold", format_value(threshold)))
    change = describe_change(current_value, previous_value)
    if change:
        details.append(("Change", change))

    return AlertMessage(
        alert_name=alert.display_name,
        severity=severity,
        summary=summary,
        report_name=report_name,
        current_value=current_value,
        previous_value=previous_value,
        threshold_value=threshold,
        url=url,
        details=details,
    )
