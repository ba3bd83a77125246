from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
import os
import logging
from pathlib import Path
from typing import Any

# Set up logging
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """App settings from environment (for container config)."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    config_dir: str = "/config"


# Config file location (CONFIG_DIR in the environment or .env)
CONFIG_DIR = Path(Settings().config_dir)
CONFIG_FILE = CONFIG_DIR / "settings.json"
SERVERS_FILE = CONFIG_DIR / "servers.json"


class NotificationRules(BaseModel):
    """Alert rules evaluated against backend status after every poll cycle."""
    offline_enabled: bool = True
    wan_transcode_enabled: bool = True
    # Off by default: remote viewers are common and would be noisy
    any_wan_enabled: bool = False
    high_bandwidth_enabled: bool = True
    high_bandwidth_threshold_mbps: float = 50.0
    high_wan_bandwidth_enabled: bool = True
    high_wan_bandwidth_threshold_mbps: float = 30.0


class ChannelSettings(BaseModel):
    """One outbound notification channel (Discord, email, SMS, ...)."""
    name: str
    method_type: str
    enabled: bool = True
    config: dict[str, Any] = {}
    # Severity filters
    notify_info: bool = True
    notify_warn: bool = True
    notify_error: bool = True


class MonitorSettings(BaseModel):
    """User-configurable monitor settings."""
    # Seconds between poll cycles
    poll_interval_seconds: int = 15
    # Per-backend fetch timeout in seconds
    fetch_timeout_seconds: float = 10.0
    # Maximum history rows kept; 0 or negative keeps everything.
    # Also the default limit for history queries.
    history_retention: int = 500
    notification_rules: NotificationRules = NotificationRules()
    notification_channels: list[ChannelSettings] = []
    # Upper bound on channel sends running at once
    max_concurrent_sends: int = 4
    # Poster references for relative vendor artwork paths are rewritten to this route
    artwork_proxy_path: str = "/api/artwork"
    # Shared SMTP settings used by every email channel
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_from_name: str = "OmniStream"
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    # Backend log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    backend_log_level: str = "INFO"

    def is_smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from_email)


# In-memory cache of settings
_cached_settings: MonitorSettings | None = None


def ensure_config_dir():
    """Ensure config directory exists."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    logger.info(f"Ensured config directory exists: {CONFIG_DIR}")


def load_settings() -> MonitorSettings:
    """Load settings from file or return defaults."""
    global _cached_settings

    if _cached_settings is not None:
        return _cached_settings

    logger.info(f"Loading settings from {CONFIG_FILE}")

    if CONFIG_FILE.exists():
        try:
            data = json.loads(CONFIG_FILE.read_text())
            _cached_settings = MonitorSettings(**data)
            logger.info(
                f"Loaded settings successfully: poll every {_cached_settings.poll_interval_seconds}s, "
                f"{len(_cached_settings.notification_channels)} notification channels"
            )
            return _cached_settings
        except Exception as e:
            logger.error(f"Failed to load settings from {CONFIG_FILE}: {e}")

    logger.info("Using default settings (no config file found or failed to parse)")
    _cached_settings = MonitorSettings()
    return _cached_settings


def save_settings(settings: MonitorSettings) -> None:
    """Save settings to file."""
    global _cached_settings

    ensure_config_dir()

    try:
        CONFIG_FILE.write_text(json.dumps(settings.model_dump(), indent=2))
        _cached_settings = settings
        logger.info(f"Settings saved successfully to {CONFIG_FILE}")
    except Exception as e:
        logger.error(f"Failed to save settings to {CONFIG_FILE}: {e}")
        raise


def clear_settings_cache() -> None:
    """Clear the cached settings (forces reload)."""
    global _cached_settings
    _cached_settings = None
    logger.info("Settings cache cleared")


def get_settings() -> MonitorSettings:
    """Get the current monitor settings."""
    return load_settings()


def get_log_level_from_env() -> str:
    """Get log level from environment variable or default to INFO."""
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def set_log_level(level: str) -> None:
    """Set the logging level for all loggers dynamically."""
    level_upper = level.upper()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if level_upper not in valid_levels:
        logger.warning(f"Invalid log level '{level}', using INFO")
        level_upper = "INFO"

    numeric_level = getattr(logging, level_upper)
    logging.getLogger().setLevel(numeric_level)

    for logger_name in logging.root.manager.loggerDict:
        logging.getLogger(logger_name).setLevel(numeric_level)

    logger.info(f"Log level set to {level_upper}")
