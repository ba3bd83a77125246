"""
Unit tests for the config module.
"""
import json
import logging
import warnings
from pathlib import Path
from unittest.mock import patch

import config
from config import (
    ChannelSettings,
    MonitorSettings,
    NotificationRules,
    Settings,
    clear_settings_cache,
    get_log_level_from_env,
    get_settings,
    load_settings,
    save_settings,
    set_log_level,
)


class TestEnvironmentSettings:
    """Tests for the environment-backed Settings class."""

    def test_config_dir_comes_from_environment(self):
        assert config.CONFIG_DIR == Path("/tmp/omnistream_test_config")

    def test_reads_env_file_without_deprecation_warning(self, monkeypatch):
        monkeypatch.setenv("CONFIG_DIR", "/srv/omnistream")
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            settings = Settings()
        assert settings.config_dir == "/srv/omnistream"
        assert Settings.model_config["env_file"] == ".env"


class TestDefaults:
    """Tests for default settings values."""

    def test_monitor_defaults(self):
        settings = MonitorSettings()
        assert settings.poll_interval_seconds == 15
        assert settings.fetch_timeout_seconds == 10.0
        assert settings.history_retention == 500
        assert settings.notification_channels == []

    def test_rule_defaults(self):
        """Every rule except any-WAN is on by default."""
        rules = NotificationRules()
        assert rules.offline_enabled is True
        assert rules.wan_transcode_enabled is True
        assert rules.any_wan_enabled is False
        assert rules.high_bandwidth_threshold_mbps == 50.0
        assert rules.high_wan_bandwidth_threshold_mbps == 30.0

    def test_smtp_not_configured_by_default(self):
        assert MonitorSettings().is_smtp_configured() is False

    def test_smtp_configured(self):
        settings = MonitorSettings(smtp_host="mail.local", smtp_from_email="monitor@local")
        assert settings.is_smtp_configured() is True


class TestPersistence:
    """Tests for loading and saving settings.json."""

    def test_load_and_save_round_trip(self, tmp_path):
        settings_file = tmp_path / "settings.json"
        with patch.object(config, "CONFIG_DIR", tmp_path), patch.object(config, "CONFIG_FILE", settings_file):
            save_settings(MonitorSettings(
                poll_interval_seconds=30,
                notification_channels=[ChannelSettings(name="ops", method_type="discord",
                                                       config={"webhook_url": "https://x"})],
            ))
            clear_settings_cache()
            loaded = load_settings()

        assert loaded.poll_interval_seconds == 30
        assert loaded.notification_channels[0].name == "ops"
        assert json.loads(settings_file.read_text())["poll_interval_seconds"] == 30

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        settings_file = tmp_path / "settings.json"
        settings_file.write_text("{broken")
        with patch.object(config, "CONFIG_FILE", settings_file):
            clear_settings_cache()
            assert load_settings().poll_interval_seconds == 15

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()


class TestLogLevel:
    """Tests for log level helpers."""

    def test_env_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert get_log_level_from_env() == "DEBUG"

    def test_env_default(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        assert get_log_level_from_env() == "INFO"

    def test_set_log_level_invalid_uses_info(self):
        root = logging.getLogger()
        original = root.level
        try:
            set_log_level("chatty")
            assert root.level == logging.INFO
        finally:
            root.setLevel(original)
