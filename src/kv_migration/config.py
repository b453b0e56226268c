"""Configuration management for KV Bridge using Pydantic.

This module provides type-safe configuration models for the source and
target stores, migration behaviour, operation timeouts, the engine and
logging.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kv_migration.client.exceptions import ConfigurationError

# Hard ceiling for any single timeout, in seconds
MAX_TIMEOUT_SECONDS = 600.0

# Accepted log level spellings mapped onto stdlib level names
LOG_LEVEL_ALIASES = {
    "trace": "DEBUG",
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
    "fatal": "CRITICAL",
    "panic": "CRITICAL",
    "critical": "CRITICAL",
}


class DatabaseConfig(BaseModel):
    """Connection parameters for a Redis or Valkey instance."""

    host: str = Field(default="localhost", description="Server hostname or IP address")
    port: int = Field(default=6379, ge=1, le=65535, description="Server port number")
    password: str | None = Field(default=None, description="Authentication password")
    database: int = Field(default=0, ge=0, le=15, description="Logical database number")
    connection_timeout: float = Field(
        default=30.0, gt=0, description="Connection timeout in seconds"
    )
    operation_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for calls not tied to a data type, in seconds"
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Validate host is not empty."""
        if not v or v.strip() == "":
            raise ValueError("host cannot be empty")
        return v.strip()


class TimeoutConfig(BaseModel):
    """Operation-specific timeouts, in seconds.

    Instances are immutable and shared by reference between the clients
    that consult them.
    """

    model_config = ConfigDict(frozen=True)

    default_operation: float = Field(default=10.0, gt=0, le=MAX_TIMEOUT_SECONDS)
    string_operation: float = Field(default=5.0, gt=0, le=MAX_TIMEOUT_SECONDS)
    hash_operation: float = Field(default=15.0, gt=0, le=MAX_TIMEOUT_SECONDS)
    list_operation: float = Field(default=15.0, gt=0, le=MAX_TIMEOUT_SECONDS)
    set_operation: float = Field(default=15.0, gt=0, le=MAX_TIMEOUT_SECONDS)
    sorted_set_operation: float = Field(default=20.0, gt=0, le=MAX_TIMEOUT_SECONDS)
    large_data_threshold: int = Field(
        default=10000, gt=0, description="Element or byte count above which data is 'large'"
    )
    large_data_multiplier: float = Field(
        default=2.0, gt=1.0, le=10.0, description="Timeout multiplier applied to large data"
    )


class MigrationSettings(BaseModel):
    """Migration behaviour settings."""

    batch_size: int = Field(default=1000, gt=0, description="Keys processed per batch")
    retry_attempts: int = Field(
        default=3, ge=0, description="Retries for failed operations before giving up"
    )
    log_level: str = Field(default="info", description="Migration log level")
    timeout_config: TimeoutConfig = Field(default_factory=TimeoutConfig)
    collection_patterns: list[str] = Field(
        default_factory=list,
        description="Glob patterns restricting which keys are migrated (empty means all)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level and normalise it to a stdlib level name."""
        level = LOG_LEVEL_ALIASES.get(v.lower())
        if level is None:
            raise ValueError(
                f"invalid log level '{v}', must be one of: "
                "trace, debug, info, warn, error, fatal, panic"
            )
        return level

    @field_validator("collection_patterns")
    @classmethod
    def validate_collection_patterns(cls, v: list[str]) -> list[str]:
        """Validate glob syntax of collection patterns."""
        for i, pattern in enumerate(v, start=1):
            if pattern == "":
                raise ValueError(f"collection pattern {i} cannot be empty")
            if "**" in pattern:
                raise ValueError(f"collection pattern {i} contains invalid '**' sequence: {pattern}")
            if pattern.count("[") != pattern.count("]"):
                raise ValueError(f"collection pattern {i} is invalid: {pattern}")
        return v


class EngineConfig(BaseModel):
    """Settings for the migration engine."""

    batch_size: int = Field(default=1000, gt=0, description="Keys dispatched per batch")
    resume_db: str = Field(
        default="migration_resume.db", description="SQLite file holding resume state"
    )
    verify_after_migration: bool = Field(
        default=True, description="Verify data integrity after the transfer completes"
    )
    continue_on_error: bool = Field(
        default=True, description="Keep migrating when individual keys fail"
    )
    max_concurrency: int = Field(
        default=10, ge=1, le=100, description="Maximum concurrent key transfers"
    )
    progress_interval: float = Field(
        default=5.0, gt=0, description="Seconds between progress log entries"
    )
    show_progress_bar: bool = Field(default=True, description="Show a console progress bar")
    shutdown_timeout: float = Field(
        default=30.0, gt=0, description="Seconds allowed for shutdown handlers"
    )

    @property
    def resume_database_url(self) -> str:
        """SQLAlchemy URL for the resume database."""
        if "://" in self.resume_db:
            return self.resume_db
        return f"sqlite:///{self.resume_db}"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(
        default="DEBUG",
        description="File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(default="json", description="Log format (json or console)")
    file: str | None = Field(default="logs/migration.log", description="Log file path")

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class MigrationConfig(BaseSettings):
    """Main migration configuration.

    Values can be overridden from the environment with the ``RVM_`` prefix
    and ``__`` as nested delimiter, e.g. ``RVM_REDIS__HOST``.
    """

    model_config = SettingsConfigDict(
        env_prefix="RVM_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    redis: DatabaseConfig = Field(
        default_factory=lambda: DatabaseConfig(port=6379), description="Source Redis"
    )
    valkey: DatabaseConfig = Field(
        default_factory=lambda: DatabaseConfig(port=6380), description="Target Valkey"
    )
    migration: MigrationSettings = Field(
        default_factory=MigrationSettings, description="Migration behaviour"
    )
    engine: EngineConfig = Field(default_factory=EngineConfig, description="Engine settings")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    dry_run: bool = Field(default=False, description="Discover keys without copying data")

    @field_validator("valkey", mode="before")
    @classmethod
    def default_valkey_port(cls, v: Any) -> Any:
        """Use the Valkey port when a target section leaves it out."""
        if isinstance(v, dict) and "port" not in v:
            return {**v, "port": 6380}
        return v


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If config file is empty or invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ConfigurationError(f"Empty configuration file: {config_path}")

    # Expand environment variables in the config
    config_data = _expand_env_vars(config_data)

    return build_config(config_data)


def load_config(config_path: str | Path | None = None) -> MigrationConfig:
    """Load configuration from a YAML file or from defaults and environment.

    Args:
        config_path: Optional path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration
    """
    if config_path is not None:
        return load_config_from_yaml(config_path)
    return build_config({})


def build_config(data: dict[str, Any]) -> MigrationConfig:
    """Validate a configuration mapping.

    Raises:
        ConfigurationError: If any value fails validation
    """
    try:
        return MigrationConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"configuration validation failed: {e}") from e


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in config data.

    Supports ${VAR_NAME} syntax for environment variable substitution.

    Args:
        data: Configuration dictionary, list or scalar

    Returns:
        Data with expanded environment variables
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data


def redacted_dump(config: MigrationConfig) -> dict[str, Any]:
    """Dump configuration with passwords replaced."""
    config_dict = config.model_dump()
    for section in ("redis", "valkey"):
        if config_dict[section].get("password"):
            config_dict[section]["password"] = "[REDACTED]"
    return config_dict


def save_config_to_yaml(config: MigrationConfig, output_path: str | Path) -> None:
    """Save configuration to YAML file.

    Args:
        config: Configuration to save
        output_path: Path to output YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w") as f:
        yaml.dump(redacted_dump(config), f, default_flow_style=False, sort_keys=False)
