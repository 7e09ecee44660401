"""Notification content and delivery channels."""

from kpiwatch.core.notifications.channels import (
    EmailChannel,
    InAppChannel,
    NotificationChannel,
    SMTPConfig,
)
from kpiwatch.core.notifications.messages import (
    AlertMessage,
    build_alert_message,
    describe_change,
    format_value,
)

__all__ = [
    "EmailChannel",
    "InAppChannel",
    "NotificationChannel",
    "SMTPConfig",
    "AlertMessage",
    "build_alert_message",
    "describe_change",
    "format_value",
]
