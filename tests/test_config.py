"""Tests for configuration management."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from kpiwatch.config import Config
from kpiwatch.core.exceptions import ConfigurationError


class TestConfigDefaults:
    """Tests for default configuration values."""

    def test_default_paths(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
            assert cfg.db_path == Path("./data/kpiwatch.db")
            assert cfg.reporting_db_url is None

    def test_default_limits_and_retention(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
            assert cfg.http_timeout_seconds == 30
            assert cfg.reconcile_timeout_seconds == 10
            assert cfg.snapshot_batch_limit == 100
            assert cfg.snapshot_retention_days == 90
            assert cfg.alert_history_retention_days == 180
            assert cfg.fire_log_retention_days == 365

    def test_no_backend_or_smtp_by_default(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
            assert cfg.has_backend is False
            assert cfg.has_smtp is False
            assert cfg.admin_user_ids == []


class TestConfigFromEnv:
    """Tests for configuration from environment variables."""

    def test_custom_db_path(self):
        with patch.dict(os.environ, {"KPIWATCH_DB_PATH": "/custom/path.db"}):
            cfg = Config()
            assert cfg.db_path == Path("/custom/path.db")

    def test_backend_url_trailing_slash_removed(self):
        with patch.dict(os.environ, {"KPIWATCH_BACKEND_URL": "https://api.example.com/v1/", "KPIWATCH_API_KEY": "k"}):
            cfg = Config()
            assert cfg.backend_url == "https://api.example.com/v1"
            assert cfg.has_backend is True

    def test_admin_user_ids(self):
        with patch.dict(os.environ, {"KPIWATCH_ADMIN_USER_IDS": "1, 2,x,2"}):
            cfg = Config()
            assert cfg.admin_user_ids == [1, 2]

    def test_smtp_settings(self):
        env = {"KPIWATCH_SMTP_HOST": "smtp.example.com", "KPIWATCH_SMTP_PORT": "2525", "KPIWATCH_SMTP_USE_TLS": "no"}
        with patch.dict(os.environ, env):
            cfg = Config()
            assert cfg.has_smtp is True
            assert cfg.smtp_port == 2525
            assert cfg.smtp_use_tls is False


class TestConfigValidation:
    """Tests for configuration validation."""

    def test_missing_api_key(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
            with pytest.raises(ConfigurationError, match="KPIWATCH_API_KEY"):
                cfg.validate()

    def test_invalid_backend_url(self):
        with patch.dict(os.environ, {"KPIWATCH_API_KEY": "k", "KPIWATCH_BACKEND_URL": "ftp://files"}):
            cfg = Config()
            with pytest.raises(ConfigurationError, match="Must start with http"):
                cfg.validate()

    def test_valid_config(self):
        with patch.dict(os.environ, {"KPIWATCH_API_KEY": "k", "KPIWATCH_BACKEND_URL": "https://api.example.com"}):
            Config().validate()

    def test_ensure_directories(self, tmp_path):
        cfg = Config(db_path=tmp_path / "nested" / "state.db")

        cfg.ensure_directories()

        assert (tmp_path / "nested").is_dir()
