"""
Custom exceptions for KPIWatch.

Provides a hierarchy of exceptions for metric capture, the remote backend,
alert configuration and notification delivery.

Transient failures (BackendUnavailableError, QueryExecutionError, DeliveryError)
are caught per item by the schedulers and retried on the next run.
"""


class KpiWatchError(Exception):
    """Base exception for all KPIWatch errors."""

    pass


class ConfigurationError(KpiWatchError):
    """Raised when application configuration is missing or invalid."""

    pass


class AlertConfigError(KpiWatchError, ValueError):
    """
    Raised when an alert definition is invalid.

    Surfaced at save time so invalid alerts never reach the scheduler.
    """

    pass


class EntityNotFoundError(KpiWatchError):
    """Raised when a dashboard entity no longer exists."""

    def __init__(self, entity_id: int):
        self.entity_id = entity_id
        super().__init__(f"Entity {entity_id} not found")


# ============================================================================
# Metric source
# ============================================================================


class MetricSourceError(KpiWatchError):
    """Base exception for failures while obtaining a metric value."""

    pass


class ReportNotFoundError(MetricSourceError):
    """Raised when a report or its definition cannot be found."""

    def __init__(self, report_id: str, detail: str = ""):
        self.report_id = report_id
        message = f"Report not found: {report_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ReportValidationError(MetricSourceError):
    """Raised when report SQL fails the read-only safety checks."""

    pass


class QueryExecutionError(MetricSourceError):
    """Raised when report SQL fails on the reporting database."""

    pass


# ============================================================================
# Remote backend
# ============================================================================


class BackendError(KpiWatchError):
    """Base exception for remote backend failures."""

    pass


class BackendUnavailableError(BackendError):
    """
    Raised on timeouts, connection errors and 5xx responses.

    Always transient: the caller retries on the next scheduled run.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class BackendResponseError(BackendError):
    """Raised when the backend answers with a 4xx or an unsuccessful payload."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# ============================================================================
# Notifications
# ============================================================================


class NotificationError(KpiWatchError):
    """Base exception for notification channel failures."""

    pass


class ChannelNotConfiguredError(NotificationError):
    """Raised when a channel is enabled on an alert but not configured."""

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"Notification channel '{channel}' is not configured")


class DeliveryError(NotificationError):
    """Raised when a single delivery attempt fails."""

    def __init__(self, channel: str, recipient: str, reason: str):
        self.channel = channel
        self.recipient = recipient
        super().__init__(f"{channel} delivery to {recipient} failed: {reason}")
