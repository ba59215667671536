"""Configuration management for browserflow."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from browserflow.core.interfaces import ConfigProvider

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Browser Configuration
    browser_headless: bool = Field(
        default=True, description="Run browser in headless mode"
    )
    browser_channel: Optional[str] = Field(
        default=None, description="Browser channel (e.g. 'chrome'); bundled Chromium when unset"
    )
    browser_timeout: int = Field(
        default=30000, ge=1000, description="Default browser timeout (ms)"
    )
    browser_viewport_width: int = Field(
        default=1366, ge=320, description="Browser viewport width"
    )
    browser_viewport_height: int = Field(
        default=768, ge=240, description="Browser viewport height"
    )
    rotate_viewport: bool = Field(
        default=False, description="Randomize the viewport size per run"
    )
    navigation_timeout: int = Field(
        default=60000, ge=1000, description="Timeout for the initial navigation (ms)"
    )
    action_timeout: int = Field(
        default=10000, ge=100, description="Default selector wait per action (ms)"
    )
    include_shadow_dom: bool = Field(
        default=True, description="Flatten open shadow roots into the HTML snapshot"
    )
    stateless_execution: bool = Field(
        default=False, description="Do not load or persist browser storage state"
    )

    # Interpreter Configuration
    max_steps_floor: int = Field(
        default=1000, ge=1, description="Minimum step ceiling per run"
    )
    max_steps_per_action: int = Field(
        default=20, ge=1, description="Step ceiling multiplier per action"
    )
    regex_timeout_ms: int = Field(
        default=100, ge=10, description="Budget for a 'matches' condition (ms)"
    )

    # Sandbox Configuration
    sandbox_timeout_ms: int = Field(
        default=5000, ge=100, description="Extraction script timeout (ms)"
    )

    # Sub-task Configuration
    internal_api_base_url: str = Field(
        default="http://127.0.0.1:11345", description="Base URL used by 'start' actions"
    )
    internal_api_key: str = Field(
        default="", description="API key forwarded to 'start' actions"
    )

    # Security Configuration
    block_private_networks: bool = Field(
        default=True, description="Refuse navigation to private network addresses"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )
    log_file: Optional[str] = Field(
        default=None, description="Log file path"
    )

    # Storage Configuration
    data_dir: Path = Field(
        default=Path("data"), description="Data storage directory"
    )
    captures_dir: Path = Field(
        default=Path("data/captures"), description="Screenshot output directory"
    )
    storage_state_file: Path = Field(
        default=Path("data/storage_state.json"), description="Persisted cookies/localStorage"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}. Allowed values: {list(LOG_LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        if value not in LOG_FORMATS:
            raise ValueError(f"Invalid log format: {value}. Allowed values: {list(LOG_FORMATS)}")
        return value

    def max_steps_for(self, action_count: int) -> int:
        """Step ceiling for a program of ``action_count`` actions."""
        return max(action_count * self.max_steps_per_action, self.max_steps_floor)

    def create_directories(self) -> None:
        """Make sure the data, captures and storage-state directories exist."""
        for directory in {self.data_dir, self.captures_dir, self.storage_state_file.parent}:
            directory.mkdir(parents=True, exist_ok=True)


class ConfigManager(ConfigProvider):
    """Key-based read access to a Settings instance."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self.settings, key, default)

    def get_required(self, key: str) -> Any:
        """Return the value of ``key``, raising KeyError for unknown keys."""
        if key not in type(self.settings).model_fields:
            raise KeyError(f"Required configuration key not found: {key}")
        return getattr(self.settings, key)

    def get_all(self) -> Dict[str, Any]:
        return self.settings.model_dump()


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide settings.

    A ``.env`` file in the working directory is loaded into the environment
    first, and the storage directories are created.
    """
    env_file = Path(".env")
    if env_file.is_file():
        load_dotenv(env_file)

    settings = Settings()
    settings.create_directories()
    return settings


def get_config() -> ConfigManager:
    """ConfigManager over the process-wide settings."""
    return ConfigManager(get_settings())
