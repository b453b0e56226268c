"""
Decorators for CLI commands.

This module provides decorators for error handling, context passing,
and configuration loading.
"""

import functools
from collections.abc import Callable

import click

from kv_migration.cli.context import MigrationContext
from kv_migration.client.exceptions import (
    ConfigurationError,
    StateError,
    StoreConnectionError,
)
from kv_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Exit code for a run that finished with failed or mismatched keys
EXIT_KEYS_FAILED = 6


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass MigrationContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: MigrationContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        migration_ctx: MigrationContext = click_ctx.obj
        return f(migration_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Exit codes:
        0: Success
        1: General error
        2: Configuration error
        3: Store connection error
        5: State error
        6: Migration finished with failed or mismatched keys
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except ConfigurationError as e:
            logger.error("configuration_error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            click.echo(
                "\nPlease check your configuration file and environment variables.",
                err=True,
            )
            raise click.exceptions.Exit(2) from e

        except StoreConnectionError as e:
            logger.error("store_connection_error", error=str(e))
            click.echo(f"Connection Error: {e}", err=True)
            click.echo(
                "\nPlease verify that the Redis and Valkey servers are reachable "
                "and the credentials are correct.",
                err=True,
            )
            raise click.exceptions.Exit(3) from e

        except StateError as e:
            logger.error("state_error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            click.echo(
                "\nThere was an error accessing the resume database. "
                "It may be corrupted or inaccessible.",
                err=True,
            )
            raise click.exceptions.Exit(5) from e

        except Exception as e:
            logger.error("unexpected_error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """
    Decorator to ensure configuration is loaded.

    Loads and validates the configuration before the command runs and
    exits with code 2 if that fails.
    """

    @functools.wraps(f)
    def wrapper(ctx: MigrationContext, *args, **kwargs):
        try:
            _ = ctx.config
        except Exception as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        return f(ctx, *args, **kwargs)

    return wrapper
