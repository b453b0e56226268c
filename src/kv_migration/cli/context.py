"""
CLI context for KV Bridge.

This module provides the context object that is passed to all CLI commands,
holding the configuration and building the store clients and engine.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kv_migration.cli.utils import console
from kv_migration.client.base_client import BaseStoreClient
from kv_migration.client.exceptions import ConfigurationError
from kv_migration.client.redis_client import RedisStoreClient
from kv_migration.client.timeouts import TimeoutPolicy
from kv_migration.config import DatabaseConfig, MigrationConfig, build_config, load_config
from kv_migration.migration.engine import MigrationEngine
from kv_migration.migration.resume import ResumeStore
from kv_migration.utils.logging import MigrationLogger, get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Path to configuration file (defaults and environment
            are used when omitted)
        log_level: Console logging level
        log_file: Optional log file path
        config: Loaded migration configuration
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration."""
        if self._config is None:
            logger.debug("loading_configuration", config_path=str(self.config_path))
            try:
                self._config = load_config(self.config_path)
            except FileNotFoundError as e:
                raise ConfigurationError(str(e)) from e
            logger.debug("configuration_loaded")

        return self._config

    def apply_overrides(self, overrides: dict[str, dict[str, Any]]) -> MigrationConfig:
        """Revalidate the configuration with command-line values applied.

        ``None`` values are ignored so unset options keep the configured value.

        Raises:
            ConfigurationError: If an override is invalid
        """
        data = self.config.model_dump()
        changed = False
        for section, values in overrides.items():
            for name, value in values.items():
                if value is not None:
                    data[section][name] = value
                    changed = True

        if changed:
            self._config = build_config(data)
        return self.config

    def create_store_client(self, db_config: DatabaseConfig, label: str) -> BaseStoreClient:
        timeout_policy = TimeoutPolicy(self.config.migration.timeout_config)
        return RedisStoreClient(db_config, timeout_policy=timeout_policy, label=label)

    def create_engine(self, use_resume: bool = True) -> MigrationEngine:
        """Build an engine for the configured source and target."""
        config = self.config
        resume_store = ResumeStore(config.engine.resume_database_url) if use_resume else None
        return MigrationEngine(
            source=self.create_store_client(config.redis, "redis"),
            target=self.create_store_client(config.valkey, "valkey"),
            config=config,
            logger=MigrationLogger(),
            resume_store=resume_store,
            console=console,
        )
