"""specrollout configuration management.

Configuration is loaded from multiple sources with the following priority
(highest to lowest):
1. Explicit overrides passed to ``get_settings``
2. Environment variables (with SPECROLLOUT_ prefix)
3. Configuration file (specrollout.config.yaml)
4. Default values

Example usage:
    from specrollout.core.settings import get_settings

    settings = get_settings()
    print(settings.recorder.max_queue_size)

Environment variable support:
    SPECROLLOUT_LOGGING__LEVEL=DEBUG
    SPECROLLOUT_TRACKER__DATABASE_URL=sqlite+aiosqlite:///rollout.db
    SPECROLLOUT_ASSIGNMENT__SALT=my-salt
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Default config file names to search for
CONFIG_FILE_NAMES = ["specrollout.config.yaml", "specrollout.config.yml"]

_NESTED_SECTIONS = ("logging", "tracker", "recorder", "assignment")


def _find_config_file(start_dir: Path | None = None) -> Path | None:
    """Find configuration file by searching current directory and parents.

    Args:
        start_dir: Directory to start search from.
            Defaults to current working directory.

    Returns:
        Path to config file if found, None otherwise.
    """
    search_dir = start_dir or Path.cwd()

    # Limit search depth to prevent infinite loops
    for _ in range(10):
        for filename in CONFIG_FILE_NAMES:
            config_path = search_dir / filename
            if config_path.exists():
                return config_path

        parent = search_dir.parent
        if parent == search_dir:
            break
        search_dir = parent

    return None


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary of configuration values.
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
            return config if isinstance(config, dict) else {}
    except yaml.YAMLError as e:
        logger.warning("Failed to parse config file %s: %s", config_path, e)
        return {}
    except OSError as e:
        logger.warning("Failed to read config file %s: %s", config_path, e)
        return {}


def _merge_sections(
    file_config: dict[str, Any], data: dict[str, Any]
) -> dict[str, Any]:
    """Merge file values under explicit values, section by section."""
    merged = {**file_config, **data}
    for section in _NESTED_SECTIONS:
        file_section = file_config.get(section)
        if not isinstance(file_section, dict):
            continue
        explicit = data.get(section)
        if isinstance(explicit, BaseModel):
            continue
        merged[section] = {
            **file_section,
            **(explicit if isinstance(explicit, dict) else {}),
        }
    return merged


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    configure: bool = Field(
        default=True,
        description=(
            "Install structlog handlers on the root logger when an engine is "
            "created. Disable when the host process configures logging"
        ),
    )
    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_output: bool | None = Field(
        default=None,
        description="Output logs in JSON format. None auto-detects from the TTY",
    )
    file: str | None = Field(
        default=None,
        description="Log file path (optional)",
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v


class TrackerSettings(BaseModel):
    """Metric and assignment storage settings."""

    database_url: str | None = Field(
        default=None,
        description=(
            "Database URL for durable tracking. None keeps samples in memory. "
            "Example: sqlite+aiosqlite:///rollout.db"
        ),
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements for debugging",
    )


class RecorderSettings(BaseModel):
    """Background assignment recorder settings."""

    max_queue_size: int = Field(
        default=10000,
        ge=1,
        description="Maximum pending assignments before new ones are dropped",
    )
    shutdown_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds to wait for pending assignments on shutdown",
    )


class AssignmentSettings(BaseModel):
    """Bucketing and significance settings."""

    salt: str = Field(
        default="specrollout",
        min_length=1,
        description="Salt mixed into every bucketing hash",
    )
    significance_level: float = Field(
        default=0.05,
        gt=0.0,
        lt=1.0,
        description="p-value below which a winner is declared",
    )


class RolloutSettings(BaseSettings):
    """Main specrollout configuration settings.

    Example:
        settings = RolloutSettings()
        print(settings.assignment.salt)

        settings = RolloutSettings(tracker={"database_url": "sqlite+aiosqlite://"})
    """

    model_config = SettingsConfigDict(
        env_prefix="SPECROLLOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    recorder: RecorderSettings = Field(default_factory=RecorderSettings)
    assignment: AssignmentSettings = Field(default_factory=AssignmentSettings)

    @model_validator(mode="before")
    @classmethod
    def load_from_config_file(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load configuration from YAML file and merge with provided data."""
        if data.get("_skip_file_loading"):
            data.pop("_skip_file_loading", None)
            return data

        config_path = _find_config_file()
        if config_path:
            file_config = _load_yaml_config(config_path)
            if file_config:
                logger.debug("Loaded configuration from %s", config_path)
                return _merge_sections(file_config, data)

        return data

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a plain dictionary."""
        return self.model_dump(mode="json")


def get_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> RolloutSettings:
    """Get specrollout settings instance.

    Args:
        config_file: Optional explicit path to configuration file.
        **overrides: Explicit configuration overrides.

    Returns:
        Configured RolloutSettings instance.

    Example:
        settings = get_settings(recorder={"max_queue_size": 100})
        settings = get_settings(config_file=Path("custom.yaml"))
    """
    if config_file and config_file.exists():
        file_config = _load_yaml_config(config_file)
        merged = _merge_sections(file_config, overrides)
        return RolloutSettings(_skip_file_loading=True, **merged)

    return RolloutSettings(**overrides)


@lru_cache
def get_cached_settings() -> RolloutSettings:
    """Get cached settings instance.

    Note:
        The cache can be cleared with get_cached_settings.cache_clear() if needed.
    """
    return get_settings()
