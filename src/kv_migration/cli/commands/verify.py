"""
Verification command.

Compares every source key with the target without copying anything.
"""

import click

from kv_migration.cli.commands.migrate import display_verification
from kv_migration.cli.context import MigrationContext
from kv_migration.cli.decorators import EXIT_KEYS_FAILED, handle_errors, pass_context, requires_config
from kv_migration.cli.utils import echo_error, echo_info, echo_success


@click.command(name="verify")
@pass_context
@requires_config
@handle_errors
def verify(ctx: MigrationContext) -> None:
    """Verify that the target holds the same data as the source.

    Each key is checked for existence, type and content. Every discrepancy
    is listed by key: missing hash fields, differing list elements, sorted
    set score changes and so on.

    Exits with code 6 when any key fails verification.

    Examples:

        kv-bridge verify --config config.yaml
    """
    config = ctx.config
    echo_info(
        f"Verifying {config.valkey.host}:{config.valkey.port}/{config.valkey.database} "
        f"against {config.redis.host}:{config.redis.port}/{config.redis.database}"
    )

    engine = ctx.create_engine(use_resume=False)
    summary = engine.verify_only()

    click.echo()
    display_verification(summary)

    if summary.failed_keys:
        echo_error(f"{summary.failed_keys:,} keys failed verification")
        raise click.exceptions.Exit(EXIT_KEYS_FAILED)

    echo_success(f"All {summary.total_keys:,} keys verified")
