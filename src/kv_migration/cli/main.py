"""
Main CLI entry point for KV Bridge.

This module provides the command-line interface for migrating keys from
a Redis server to a Valkey server.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from kv_migration import __version__
from kv_migration.cli.commands import config as config_commands
from kv_migration.cli.commands import migrate as migrate_commands
from kv_migration.cli.commands import verify as verify_commands
from kv_migration.cli.context import MigrationContext
from kv_migration.utils.logging import APP_NAME, configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name=APP_NAME)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="KV_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="KV_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path (default: logs/migration.log)",
    envvar="KV_BRIDGE_LOG_FILE",
)
@click.option("--verbose", "-v", is_flag=True, help="Show informational log messages")
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
    verbose: bool,
) -> None:
    """KV Bridge - Migrate keys from Redis to Valkey.

    Copies strings, hashes, lists, sets and sorted sets together with their
    TTLs, then verifies the result key by key.

    Examples:

        # Validate configuration
        kv-bridge config validate --config config.yaml

        # Run a migration
        kv-bridge migrate --config config.yaml

        # Check an earlier migration
        kv-bridge verify --config config.yaml
    """
    if verbose and log_level.upper() == "WARNING":
        log_level = "INFO"

    effective_log_file = str(log_file) if log_file else "logs/migration.log"
    configure_logging(level=log_level, log_file=effective_log_file)

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


@cli.command(name="version")
def version() -> None:
    """Show version information."""
    click.echo(f"{APP_NAME} version {__version__}")


cli.add_command(config_commands.config)
cli.add_command(migrate_commands.migrate)
cli.add_command(verify_commands.verify)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # Without standalone mode click returns the exit code of ctx.exit and Exit
        result = cli(standalone_mode=False)
        return result if isinstance(result, int) else 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
