"""
Unit tests for configuration management.
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from stepengine.config.settings import ConfigManager, Settings, get_settings


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Test default timer values."""
        settings = Settings()

        assert settings.selector_timeout_ms == 10000
        assert settings.element_availability_delay_ms == 200
        assert settings.check_condition_interval_ms == 50
        assert settings.wait_for_default_timeout_ms == 10000
        assert settings.iframe_ping_timeout_ms == 10000
        assert settings.file_downloading_check_delay_ms == 500
        assert settings.page_unload_timeout_ms == 15000
        assert settings.skip_js_errors is False
        assert settings.playback is False
        assert settings.native_dialogs_info is None
        assert settings.log_level == "INFO"
        assert settings.log_format == "text"

    def test_settings_from_env(self):
        """Test loading settings from prefixed environment variables."""
        with patch.dict(os.environ, {
            "STEPENGINE_SELECTOR_TIMEOUT_MS": "3000",
            "STEPENGINE_SKIP_JS_ERRORS": "true",
            "STEPENGINE_LOG_LEVEL": "DEBUG",
        }):
            settings = Settings()

            assert settings.selector_timeout_ms == 3000
            assert settings.skip_js_errors is True
            assert settings.log_level == "DEBUG"

    def test_unprefixed_env_is_ignored(self):
        """Test that variables without the prefix do not leak in."""
        with patch.dict(os.environ, {"SELECTOR_TIMEOUT_MS": "1"}):
            assert Settings().selector_timeout_ms == 10000

    def test_seconds_properties(self):
        """Test millisecond fields exposed as seconds."""
        settings = Settings(
            selector_timeout_ms=1500,
            element_availability_delay_ms=250,
            check_condition_interval_ms=20,
        )

        assert settings.selector_timeout == 1.5
        assert settings.element_availability_delay == 0.25
        assert settings.check_condition_interval == 0.02

    def test_log_level_validation(self):
        """Test log level validation."""
        settings = Settings(log_level="debug")
        assert settings.log_level == "DEBUG"

        with pytest.raises(ValueError, match="Invalid log level"):
            Settings(log_level="INVALID")

    def test_log_format_validation(self):
        """Test log format validation."""
        assert Settings(log_format="json").log_format == "json"
        assert Settings(log_format="text").log_format == "text"

        with pytest.raises(ValueError, match="Invalid log format"):
            Settings(log_format="xml")

    def test_numeric_validation(self):
        """Test that timers reject impossible values."""
        assert Settings(selector_timeout_ms=0).selector_timeout_ms == 0

        with pytest.raises(ValueError):
            Settings(selector_timeout_ms=-1)

        with pytest.raises(ValueError):
            Settings(element_availability_delay_ms=0)

        with pytest.raises(ValueError):
            Settings(iframe_ping_interval_ms=0)


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_get_existing_key(self):
        """Test getting an existing configuration key."""
        config = ConfigManager(Settings(navigation_delay_ms=70))

        assert config.get("navigation_delay_ms") == 70
        assert config.get("recording") is False

    def test_get_missing_key(self):
        """Test getting a missing configuration key."""
        config = ConfigManager(Settings())

        assert config.get("non_existent_key") is None
        assert config.get("non_existent_key", "default") == "default"

    def test_get_required_missing(self):
        """Test getting a required missing key."""
        config = ConfigManager(Settings())

        with pytest.raises(KeyError, match="Required configuration key not found"):
            config.get_required("non_existent_key")

    def test_get_all(self):
        """Test getting all configuration values."""
        config = ConfigManager(Settings(playback=True, log_level="DEBUG"))

        all_config = config.get_all()

        assert all_config["playback"] is True
        assert all_config["log_level"] == "DEBUG"
        assert "iframe_ping_timeout_ms" in all_config


class TestGetSettings:
    """Tests for get_settings function."""

    @patch("stepengine.config.settings.load_dotenv")
    @patch("stepengine.config.settings.Path")
    def test_get_settings_loads_env(self, mock_path_class, mock_load_dotenv):
        """Test that get_settings loads an existing .env file."""
        mock_path_instance = MagicMock()
        mock_path_instance.exists.return_value = True
        mock_path_class.return_value = mock_path_instance

        get_settings.cache_clear()
        try:
            settings = get_settings()
        finally:
            get_settings.cache_clear()

        assert isinstance(settings, Settings)
        mock_load_dotenv.assert_called_once_with(mock_path_instance)

    def test_get_settings_is_cached(self):
        """Test that the same instance is returned."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
