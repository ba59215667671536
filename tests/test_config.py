"""
Unit tests for configuration management.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from browserflow.config.settings import ConfigManager, Settings, get_config, get_settings


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Test default settings values."""
        settings = Settings(_env_file=None)

        assert settings.browser_headless is True
        assert settings.browser_viewport_width == 1366
        assert settings.browser_viewport_height == 768
        assert settings.max_steps_floor == 1000
        assert settings.max_steps_per_action == 20
        assert settings.regex_timeout_ms == 100
        assert settings.sandbox_timeout_ms == 5000
        assert settings.block_private_networks is True
        assert settings.internal_api_base_url == "http://127.0.0.1:11345"
        assert settings.log_level == "INFO"

    def test_settings_from_env(self):
        """Test loading settings from environment variables."""
        with patch.dict(os.environ, {
            "BROWSER_HEADLESS": "false",
            "MAX_STEPS_FLOOR": "250",
            "INTERNAL_API_KEY": "secret-key",
            "BLOCK_PRIVATE_NETWORKS": "0",
            "LOG_LEVEL": "debug",
        }):
            settings = Settings(_env_file=None)

            assert settings.browser_headless is False
            assert settings.max_steps_floor == 250
            assert settings.internal_api_key == "secret-key"
            assert settings.block_private_networks is False
            assert settings.log_level == "DEBUG"

    def test_log_level_validation(self):
        """Test log level validation."""
        with pytest.raises(ValueError, match="Invalid log level"):
            Settings(_env_file=None, log_level="LOUD")

    def test_log_format_validation(self):
        """Test log format validation."""
        assert Settings(_env_file=None, log_format="text").log_format == "text"

        with pytest.raises(ValueError, match="Invalid log format"):
            Settings(_env_file=None, log_format="xml")

    def test_bounds(self):
        """Test numeric lower bounds."""
        with pytest.raises(ValueError):
            Settings(_env_file=None, regex_timeout_ms=1)
        with pytest.raises(ValueError):
            Settings(_env_file=None, max_steps_floor=0)

    def test_max_steps_for(self):
        """Test the step ceiling scales with program size above the floor."""
        settings = Settings(_env_file=None, max_steps_floor=100, max_steps_per_action=10)

        assert settings.max_steps_for(3) == 100
        assert settings.max_steps_for(50) == 500

    def test_create_directories(self, settings):
        """Test storage directories are created."""
        settings.create_directories()

        assert settings.data_dir.is_dir()
        assert settings.captures_dir.is_dir()
        assert settings.storage_state_file.parent.is_dir()


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_get(self, settings):
        """Test value lookup with a default."""
        config = ConfigManager(settings)

        assert config.get("regex_timeout_ms") == 200
        assert config.get("missing", "fallback") == "fallback"

    def test_get_required(self, settings):
        """Test required lookups raise for unknown keys."""
        config = ConfigManager(settings)

        assert config.get_required("sandbox_timeout_ms") == 5000
        with pytest.raises(KeyError, match="missing"):
            config.get_required("missing")

    def test_get_all(self, settings):
        """Test the full dump."""
        values = ConfigManager(settings).get_all()

        assert values["captures_dir"] == settings.captures_dir
        assert "internal_api_key" in values


def test_get_settings_is_cached(tmp_path, monkeypatch):
    """Test the global settings are created once."""
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    try:
        first = get_settings()
        second = get_settings()

        assert first is second
        assert Path("data/captures").is_dir()
    finally:
        get_settings.cache_clear()


def test_get_config_wraps_cached_settings(tmp_path, monkeypatch):
    """Test the config manager reads the global settings."""
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    try:
        config = get_config()

        assert config.settings is get_settings()
        assert config.get("sandbox_timeout_ms") == 5000
    finally:
        get_settings.cache_clear()
