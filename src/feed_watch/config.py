"""
Configuration management for feed-watch.

Uses Pydantic for validation and pydantic-settings for environment variable support.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Key-value store database configuration.

    `path` accepts either a filesystem path (SQLite) or a full SQLAlchemy URL.
    Environment variables: DB_PATH, DB_ECHO.
    """

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: str = Field(default="data/feed_watch.db", description="Database file path or SQLAlchemy URL")
    echo: bool = Field(default=False, description="Echo SQL statements")
    lock_timeout_seconds: int = Field(default=30, ge=1, description="SQLite lock timeout")

    @property
    def url(self) -> str:
        """SQLAlchemy URL for the configured database."""
        if "://" in self.path:
            return self.path
        return f"sqlite:///{self.path}"

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class PollingConfig(BaseSettings):
    """Feed polling scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="POLLING_")

    timezone: str = Field(default="UTC", description="Scheduler timezone")

    # Concurrency
    max_concurrent_polls: int = Field(default=5, ge=1, le=100, description="Global in-flight fetch ceiling")
    max_workers: int = Field(default=10, ge=1, le=100, description="Scheduler worker threads")
    slot_wait_seconds: float = Field(default=1.0, gt=0, description="Re-check period while waiting for a slot")

    # Timing
    stagger_delay_seconds: float = Field(default=5.0, ge=0, description="Startup offset between tasks")
    restart_debounce_seconds: float = Field(default=2.0, ge=0, description="Configuration change debounce")
    config_watch_interval_seconds: int = Field(
        default=5, ge=1, description="How often the feeds file is checked for edits"
    )


class BackoffConfig(BaseSettings):
    """Exponential backoff applied to failing feeds."""

    model_config = SettingsConfigDict(env_prefix="BACKOFF_")

    threshold: int = Field(default=3, ge=0, description="Consecutive errors tolerated before backing off")
    base: int = Field(default=2, ge=1, description="Exponential base")
    max_multiplier: int = Field(default=8, ge=1, description="Ceiling of the interval multiplier")


class NotificationConfig(BaseSettings):
    """User-facing notification throttling."""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")

    error_threshold: int = Field(
        default=5, ge=1, description="Consecutive errors before a system is reported unreachable"
    )
    error_cooldown_seconds: int = Field(
        default=3600, ge=0, description="Minimum time between unreachable notices per system"
    )


class OfflineConfig(BaseSettings):
    """Offline detection (aggregate error-rate hysteresis)."""

    model_config = SettingsConfigDict(env_prefix="OFFLINE_")

    enabled: bool = Field(default=True, description="Enable offline detection")
    sample_interval_seconds: int = Field(default=60, ge=1, description="Sampling period")
    recent_window_seconds: int = Field(default=300, ge=1, description="Window for 'recent' errors")
    pause_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Error rate that counts as offline")
    resume_threshold: float = Field(default=0.2, ge=0.0, le=1.0, description="Error rate that allows resuming")
    required_samples: int = Field(default=3, ge=1, description="Consecutive samples needed to pause")

    @model_validator(mode="after")
    def check_thresholds(self) -> "OfflineConfig":
        """Resume threshold must sit below the pause threshold."""
        if self.resume_threshold > self.pause_threshold:
            raise ValueError("resume_threshold must not exceed pause_threshold")
        return self


class FetcherConfig(BaseSettings):
    """HTTP feed fetcher configuration."""

    model_config = SettingsConfigDict(env_prefix="FETCHER_")

    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Request timeout")
    user_agent: str = Field(
        default="feed-watch/0.1.0",
        description="User-Agent header"
    )
    catalog_path: str = Field(default="/sap/bc/adt/feeds", description="Feed catalog path on each system")
    follow_redirects: bool = Field(default=True)
    verify_ssl: bool = Field(default=True)


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {thread.name: <20} | <cyan>{extra[name]}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Log format"
    )

    # File logging
    file_enabled: bool = Field(default=True, description="Enable file logging")
    file_path: str = Field(default="logs/feed_watch.log", description="Log file path")
    rotation: str = Field(default="50 MB", description="Log rotation size")
    retention: str = Field(default="14 days", description="Log retention period")

    # Console logging
    console_enabled: bool = Field(default=True, description="Enable console logging")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FEEDWATCH_",
        case_sensitive=False,
    )

    version: str = Field(default="0.1.0", description="Application version")
    app_name: str = Field(default="feed-watch", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")

    feeds_file: str = Field(default="config/feeds.yaml", description="Subscriptions and systems file")

    # Sub-configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    offline: OfflineConfig = Field(default_factory=OfflineConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


_SECTIONS = {
    "database": DatabaseConfig,
    "polling": PollingConfig,
    "backoff": BackoffConfig,
    "notifications": NotificationConfig,
    "offline": OfflineConfig,
    "fetcher": FetcherConfig,
    "logging": LoggingConfig,
}

# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Replace the global configuration instance."""
    global _config
    _config = config


def load_config_from_yaml(yaml_path: str) -> Config:
    """Load configuration from a YAML file.

    Values loaded from YAML take precedence over environment variables.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        Config instance loaded from the file.
    """
    import yaml

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    with yaml_file.open("r", encoding="utf-8") as f:
        config_dict = yaml.safe_load(f) or {}

    main_config = {}
    for key, value in config_dict.items():
        if key in _SECTIONS:
            main_config[key] = _SECTIONS[key](**(value or {}))
        else:
            main_config[key] = value

    return Config(**main_config)


def reload_config(yaml_path: str = "config/config.yaml") -> Config:
    """Reload configuration from environment and an optional YAML file."""
    global _config
    _config = None

    config_yaml = Path(yaml_path)
    if config_yaml.exists():
        _config = load_config_from_yaml(str(config_yaml))
    else:
        _config = Config()

    return _config
