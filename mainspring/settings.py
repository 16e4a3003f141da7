"""
Mainspring Settings - Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MainspringSettings(BaseSettings):
    """
    Mainspring configuration settings.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file in current directory
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="MS_",  # All Mainspring env vars must start with MS_
    )

    # State Configuration
    state_path: Path = Field(
        default=Path(".mainspring/state.json"),
        description="Path to the state file (env: MS_STATE_PATH)",
    )

    backup_enabled: bool = Field(
        default=True,
        description="Keep the previous state as <state>.backup on every write (env: MS_BACKUP_ENABLED)",
    )

    # Locking Configuration
    lock_enabled: bool = Field(
        default=True,
        description="Lock the state for mutations (env: MS_LOCK_ENABLED)",
    )

    lock_timeout: float = Field(
        default=0.0,
        ge=0.0,
        description="Seconds to wait for a held lock; 0 fails immediately (env: MS_LOCK_TIMEOUT)",
    )

    lock_poll_initial: float = Field(
        default=1.0,
        gt=0.0,
        description="First delay between lock attempts in seconds (env: MS_LOCK_POLL_INITIAL)",
    )

    lock_poll_max: float = Field(
        default=16.0,
        gt=0.0,
        description="Maximum delay between lock attempts in seconds (env: MS_LOCK_POLL_MAX)",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR) (env: MS_LOG_LEVEL)",
    )

    @property
    def backup_path(self) -> Path | None:
        if not self.backup_enabled:
            return None
        return self.state_path.with_name(self.state_path.name + ".backup")


# Global settings instance
_settings: MainspringSettings | None = None


def get_settings() -> MainspringSettings:
    """
    Get the global settings instance.

    Creates the settings instance on first call, then returns cached instance.

    Returns:
        MainspringSettings instance
    """
    global _settings
    if _settings is None:
        _settings = MainspringSettings()
    return _settings


def reload_settings() -> MainspringSettings:
    """
    Reload settings from environment/files.

    Useful for testing or when .env file changes.

    Returns:
        Fresh MainspringSettings instance
    """
    global _settings
    _settings = MainspringSettings()
    return _settings
