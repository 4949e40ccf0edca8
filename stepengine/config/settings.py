"""Configuration management for the stepengine runner."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stepengine.core.interfaces import ConfigProvider


class Settings(BaseSettings):
    """Runner settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="STEPENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Target waiting
    selector_timeout_ms: int = Field(
        default=10000, ge=0, description="Time to wait for an action target to appear and become visible"
    )
    element_availability_delay_ms: int = Field(
        default=200, ge=1, description="Poll interval for target existence and visibility"
    )
    check_condition_interval_ms: int = Field(
        default=50, ge=1, description="Poll interval for wait conditions and wait-for selectors"
    )
    wait_for_default_timeout_ms: int = Field(
        default=10000, ge=0, description="Default timeout of the wait-for action"
    )
    navigation_delay_ms: int = Field(
        default=1000, ge=0, description="Settle delay after a navigation is triggered"
    )

    # Frames
    iframe_existence_watching_interval_ms: int = Field(
        default=1000, ge=1, description="Interval of the delegated frame existence watcher"
    )
    iframe_ping_timeout_ms: int = Field(
        default=10000, ge=0, description="Time a frame has to answer the existence ping"
    )
    iframe_ping_interval_ms: int = Field(
        default=200, ge=1, description="Interval between repeated existence pings"
    )

    # Page lifecycle
    file_downloading_check_delay_ms: int = Field(
        default=500, ge=1, description="Poll interval for the file downloading flag after before-unload"
    )
    page_unload_timeout_ms: int = Field(
        default=15000, ge=0, description="Time to wait for the page to unload after before-unload"
    )
    animations_wait_delay_ms: int = Field(
        default=200, ge=0, description="Delay after document ready before the first step"
    )
    requests_collection_delay_ms: int = Field(
        default=300, ge=0, description="Initial page request collection delay"
    )
    additional_requests_collection_delay_ms: int = Field(
        default=100, ge=0, description="Additional page request collection delay"
    )

    # Modes
    skip_js_errors: bool = Field(
        default=False, description="Do not fail the run on uncaught page script errors"
    )
    recording: bool = Field(default=False, description="Runner works in recording mode")
    playback: bool = Field(default=False, description="Runner works in playback mode")
    native_dialogs_info: Optional[Dict[str, Any]] = Field(
        default=None, description="Native dialog state carried over from the previous page"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="text",
        description="Log format (json or text)",
    )
    log_file: Optional[str] = Field(
        default=None, description="Log file path"
    )

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("log_format")
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError(f"Invalid log format: {v}")
        return v

    @property
    def selector_timeout(self) -> float:
        return self.selector_timeout_ms / 1000

    @property
    def element_availability_delay(self) -> float:
        return self.element_availability_delay_ms / 1000

    @property
    def check_condition_interval(self) -> float:
        return self.check_condition_interval_ms / 1000


class ConfigManager(ConfigProvider):
    """Configuration manager implementation."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """
        Initialize config manager.

        Args:
            settings: Optional settings instance
        """
        self.settings = settings or get_settings()

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        try:
            return getattr(self.settings, key)
        except AttributeError:
            return default

    def get_required(self, key: str) -> Any:
        """Get required configuration value."""
        try:
            return getattr(self.settings, key)
        except AttributeError:
            raise KeyError(f"Required configuration key not found: {key}")

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self.settings.model_dump()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    # Load .env file if it exists
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    return Settings()
