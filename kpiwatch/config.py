"""
Configuration management for KPIWatch.

Centralizes all configuration from environment variables with sensible defaults.
This is the SINGLE SOURCE OF TRUTH for all application configuration.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from kpiwatch.utils.validators import parse_id_list

# Load .env file if present
load_dotenv()


@dataclass
class Config:
    """
    Application configuration loaded from environment variables.

    Optional:
        KPIWATCH_DB_PATH: Path to the SQLite state database
        KPIWATCH_REPORTING_DB_URL: SQLAlchemy URL that report SQL runs against
        KPIWATCH_BACKEND_URL: Base URL of the remote report/alert backend
        KPIWATCH_API_KEY: Bearer token for the remote backend
        KPIWATCH_SMTP_*: SMTP settings for the email channel
    """

    # Storage
    db_path: Path = field(
        default_factory=lambda: Path(
            os.getenv("KPIWATCH_DB_PATH", "./data/kpiwatch.db")
        )
    )
    reporting_db_url: Optional[str] = field(
        default_factory=lambda: os.getenv("KPIWATCH_REPORTING_DB_URL")
    )

    # ========================================================================
    # Remote backend
    # ========================================================================
    backend_url: str = field(
        default_factory=lambda: os.getenv(
            "KPIWATCH_BACKEND_URL", "http://localhost:8000/api/v1"
        )
    )
    api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("KPIWATCH_API_KEY")
    )
    http_timeout_seconds: float = field(
        default_factory=lambda: float(
            os.getenv("KPIWATCH_HTTP_TIMEOUT", "30")
        )
    )
    reconcile_timeout_seconds: float = field(
        default_factory=lambda: float(
            os.getenv("KPIWATCH_RECONCILE_TIMEOUT", "10")
        )
    )

    # ========================================================================
    # Snapshot scheduling
    # CRITICAL: batch limit bounds a single cron run after long downtime
    # ========================================================================
    snapshot_batch_limit: int = field(
        default_factory=lambda: int(
            os.getenv("KPIWATCH_SNAPSHOT_BATCH_LIMIT", "100")
        )
    )
    query_row_limit: int = field(
        default_factory=lambda: int(
            os.getenv("KPIWATCH_QUERY_ROW_LIMIT", "100000")
        )
    )

    # ========================================================================
    # Retention
    # ========================================================================
    snapshot_retention_days: int = field(
        default_factory=lambda: int(
            os.getenv("KPIWATCH_SNAPSHOT_RETENTION_DAYS", "90")
        )
    )
    alert_history_retention_days: int = field(
        default_factory=lambda: int(
            os.getenv("KPIWATCH_ALERT_HISTORY_RETENTION_DAYS", "180")
        )
    )
    fire_log_retention_days: int = field(
        default_factory=lambda: int(
            os.getenv("KPIWATCH_FIRE_LOG_RETENTION_DAYS", "365")
        )
    )

    # Report data cache used by previews
    cache_ttl_seconds: int = field(
        default_factory=lambda: int(
            os.getenv("KPIWATCH_CACHE_TTL", "300")
        )
    )

    # ========================================================================
    # Notifications
    # ========================================================================
    admin_user_ids: list[int] = field(
        default_factory=lambda: parse_id_list(
            os.getenv("KPIWATCH_ADMIN_USER_IDS", "")
        )
    )
    site_name: str = field(
        default_factory=lambda: os.getenv("KPIWATCH_SITE_NAME", "KPIWatch")
    )
    site_url: str = field(
        default_factory=lambda: os.getenv("KPIWATCH_SITE_URL", "http://localhost")
    )
    smtp_host: Optional[str] = field(
        default_factory=lambda: os.getenv("KPIWATCH_SMTP_HOST")
    )
    smtp_port: int = field(
        default_factory=lambda: int(
            os.getenv("KPIWATCH_SMTP_PORT", "587")
        )
    )
    smtp_user: Optional[str] = field(
        default_factory=lambda: os.getenv("KPIWATCH_SMTP_USER")
    )
    smtp_password: Optional[str] = field(
        default_factory=lambda: os.getenv("KPIWATCH_SMTP_PASSWORD")
    )
    smtp_from: str = field(
        default_factory=lambda: os.getenv("KPIWATCH_SMTP_FROM", "noreply@localhost")
    )
    smtp_use_tls: bool = field(
        default_factory=lambda: os.getenv("KPIWATCH_SMTP_USE_TLS", "true").lower()
        in ("1", "true", "yes")
    )

    def __post_init__(self) -> None:
        """Convert string paths to Path objects if needed."""
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        self.backend_url = self.backend_url.rstrip("/")

    def validate(self) -> None:
        """
        Validate configuration needed to talk to the remote backend.

        Raises:
            ConfigurationError: If required configuration is missing or invalid.
        """
        from kpiwatch.core.exceptions import ConfigurationError

        if not self.api_key:
            raise ConfigurationError(
                "KPIWATCH_API_KEY not configured. "
                "Set KPIWATCH_API_KEY in your .env file to reach the report backend."
            )

        if not self.backend_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"Invalid KPIWATCH_BACKEND_URL: {self.backend_url}. "
                "Must start with http:// or https://"
            )

        if self.snapshot_batch_limit <= 0:
            raise ConfigurationError("KPIWATCH_SNAPSHOT_BATCH_LIMIT must be positive")

    def ensure_directories(self) -> None:
        """Create data directories if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def has_backend(self) -> bool:
        """Check if the remote backend is configured."""
        return bool(self.api_key and self.backend_url)

    @property
    def has_smtp(self) -> bool:
        """Check if SMTP delivery is configured."""
        return bool(self.smtp_host)


# Global configuration instance
config = Config()
