"""Tests for Settings.from_env."""

import os
from unittest.mock import patch

from collector.market.config import DEFAULT_KIS_REST_URL, DEFAULT_KIS_WS_URL, Settings


class TestSettings:
    """Tests for environment parsing."""

    def test_defaults(self):
        """Test the values used when nothing is set."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        assert settings.kis_rest_url == DEFAULT_KIS_REST_URL
        assert settings.kis_ws_url == DEFAULT_KIS_WS_URL
        assert settings.flush_interval == 20.0
        assert settings.fx_interval == 240.0
        assert settings.quote_delay == 0.5
        assert settings.stream_supervise is True
        assert settings.has_kis_credentials is False
        assert settings.has_twelvedata_key is False
        assert settings.db_path == ""

    def test_reads_values(self):
        """Test that every variable is picked up and trimmed."""
        env = {
            "KIS_APP_KEY": " key ",
            "KIS_APP_SECRET": "secret",
            "KIS_WS_URL": "ws://localhost:21000",
            "TWELVEDATA_API_KEY": "fx",
            "COLLECTOR_DB_PATH": "/tmp/collector.duckdb",
            "COLLECTOR_FLUSH_INTERVAL": "5",
            "COLLECTOR_STREAM_SUPERVISE": "false",
        }
        settings = Settings.from_env(env)
        assert settings.kis_app_key == "key"
        assert settings.has_kis_credentials is True
        assert settings.has_twelvedata_key is True
        assert settings.kis_ws_url == "ws://localhost:21000"
        assert settings.db_path == "/tmp/collector.duckdb"
        assert settings.flush_interval == 5.0
        assert settings.stream_supervise is False

    def test_whitespace_key_means_missing(self):
        """Test that whitespace-only credentials count as unset."""
        settings = Settings.from_env({"KIS_APP_KEY": "   ", "KIS_APP_SECRET": "s"})
        assert settings.has_kis_credentials is False

    def test_bad_numbers_fall_back(self):
        """Test that invalid or non-positive intervals use the default."""
        settings = Settings.from_env({"COLLECTOR_FLUSH_INTERVAL": "soon", "COLLECTOR_FX_INTERVAL": "-1"})
        assert settings.flush_interval == 20.0
        assert settings.fx_interval == 240.0
