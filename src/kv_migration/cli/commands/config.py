"""
Configuration management commands.

This module provides commands for validating and displaying the
migration configuration.
"""

import click
import yaml

from kv_migration.cli.context import MigrationContext
from kv_migration.cli.decorators import handle_errors, pass_context, requires_config
from kv_migration.cli.utils import echo_info, echo_success, echo_warning, print_table
from kv_migration.config import MigrationConfig, redacted_dump


@click.group(name="config")
def config() -> None:
    """Configuration management commands.

    Validate and display migration configuration.
    """
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Connect to and ping the source and target servers",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_connectivity: bool) -> None:
    """Validate migration configuration.

    Loading the configuration already checks ports, database numbers,
    timeouts and collection patterns. This command reports the result and
    warns about settings that are valid but unusual.

    Examples:

        # Basic validation
        kv-bridge config validate --config config.yaml

        # Validate and test connectivity
        kv-bridge config validate --config config.yaml --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path or 'defaults and environment'}")

    config = ctx.config

    click.echo()
    _display_config_summary(config)
    click.echo()
    _warn_unusual_settings(config)

    if check_connectivity:
        click.echo()
        echo_info("Testing connectivity...")
        engine = ctx.create_engine(use_resume=False)
        try:
            engine.connect()
        finally:
            engine.disconnect()
        echo_success("Source and target are reachable")

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(config: MigrationConfig) -> None:
    """Display configuration summary."""
    patterns = ", ".join(config.migration.collection_patterns) or "(all keys)"
    rows = [
        ["Source", f"{config.redis.host}:{config.redis.port}/{config.redis.database}"],
        ["Target", f"{config.valkey.host}:{config.valkey.port}/{config.valkey.database}"],
        ["Batch Size", config.engine.batch_size],
        ["Max Concurrency", config.engine.max_concurrency],
        ["Retry Attempts", config.migration.retry_attempts],
        ["Verify After Migration", config.engine.verify_after_migration],
        ["Continue On Error", config.engine.continue_on_error],
        ["Resume Database", config.engine.resume_db],
        ["Key Patterns", patterns],
    ]

    print_table(
        "Configuration Summary",
        ["Setting", "Value"],
        rows,
    )


def _warn_unusual_settings(config: MigrationConfig) -> None:
    if (
        config.redis.host == config.valkey.host
        and config.redis.port == config.valkey.port
        and config.redis.database == config.valkey.database
    ):
        echo_warning("Source and target point at the same database")

    if config.engine.max_concurrency > 50:
        echo_warning(
            f"High concurrency ({config.engine.max_concurrency}) may impact server performance"
        )

    if not config.engine.verify_after_migration:
        echo_warning("Verification after migration is disabled")


@config.command(name="show")
@pass_context
@requires_config
@handle_errors
def show(ctx: MigrationContext) -> None:
    """Display current configuration.

    Shows the effective configuration as YAML with passwords masked.

    Examples:

        kv-bridge config show --config config.yaml
    """
    click.echo(yaml.safe_dump(redacted_dump(ctx.config), default_flow_style=False, sort_keys=False))
