"""
Migration commands.

This module provides the ``migrate`` command, which copies every key from
the source Redis server to the target Valkey server.
"""

import click

from kv_migration.cli.context import MigrationContext
from kv_migration.cli.decorators import EXIT_KEYS_FAILED, handle_errors, pass_context, requires_config
from kv_migration.cli.utils import (
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    format_duration,
    print_table,
)
from kv_migration.migration.engine import DryRunReport, MigrationReport
from kv_migration.migration.scanner import KeyScanner
from kv_migration.migration.verifier import VerificationSummary
from kv_migration.reporting.monitor import format_bytes

# Failed verification results listed in the mismatch table
MISMATCH_TABLE_LIMIT = 50

DRY_RUN_SAMPLE = 10


def store_options(role: str, label: str):
    """Host, port, password and database overrides for one store."""

    def decorator(f):
        options = [
            click.option(f"--{role}-host", help=f"{label} host"),
            click.option(f"--{role}-port", type=int, help=f"{label} port"),
            click.option(f"--{role}-password", help=f"{label} password"),
            click.option(f"--{role}-db", type=int, help=f"{label} database number"),
        ]
        for option in reversed(options):
            f = option(f)
        return f

    return decorator


@click.command(name="migrate")
@click.option("--dry-run", is_flag=True, help="Discover keys and show a sample without copying")
@click.option(
    "--verify/--no-verify",
    default=None,
    help="Verify the copied keys after the transfer",
)
@click.option(
    "--continue-on-error/--stop-on-error",
    default=None,
    help="Keep going when individual keys fail",
)
@click.option("--resume-db", help="Resume database file or SQLAlchemy URL")
@click.option("--progress-interval", type=float, help="Seconds between progress log entries")
@click.option("--max-concurrency", type=int, help="Maximum concurrent key transfers")
@click.option("--batch-size", type=int, help="Keys per batch")
@click.option("--no-progress-bar", is_flag=True, help="Disable the console progress bar")
@store_options("source", "Source Redis")
@store_options("target", "Target Valkey")
@pass_context
@requires_config
@handle_errors
def migrate(
    ctx: MigrationContext,
    dry_run: bool,
    verify: bool | None,
    continue_on_error: bool | None,
    resume_db: str | None,
    progress_interval: float | None,
    max_concurrency: int | None,
    batch_size: int | None,
    no_progress_bar: bool,
    source_host: str | None,
    source_port: int | None,
    source_password: str | None,
    source_db: int | None,
    target_host: str | None,
    target_port: int | None,
    target_password: str | None,
    target_db: int | None,
) -> None:
    """Migrate all keys from Redis to Valkey.

    Keys are copied with their TTLs in batches on a pool of workers.
    Completed keys are recorded in the resume database, so an interrupted
    run picks up where it stopped.

    Examples:

        # Migrate using a configuration file
        kv-bridge migrate --config config.yaml

        # Preview the keys that would be migrated
        kv-bridge migrate --config config.yaml --dry-run

        # Override the target and stop at the first failed key
        kv-bridge migrate --target-host valkey.internal --stop-on-error
    """
    config = ctx.apply_overrides(
        {
            "redis": {
                "host": source_host,
                "port": source_port,
                "password": source_password,
                "database": source_db,
            },
            "valkey": {
                "host": target_host,
                "port": target_port,
                "password": target_password,
                "database": target_db,
            },
            "migration": {"batch_size": batch_size},
            "engine": {
                "batch_size": batch_size,
                "verify_after_migration": verify,
                "continue_on_error": continue_on_error,
                "resume_db": resume_db,
                "progress_interval": progress_interval,
                "max_concurrency": max_concurrency,
                "show_progress_bar": False if no_progress_bar else None,
            },
        }
    )

    echo_info(
        f"Source: {config.redis.host}:{config.redis.port}/{config.redis.database} -> "
        f"Target: {config.valkey.host}:{config.valkey.port}/{config.valkey.database}"
    )

    if dry_run or config.dry_run:
        engine = ctx.create_engine()
        _display_dry_run(engine.dry_run(sample=DRY_RUN_SAMPLE))
        return

    engine = ctx.create_engine()
    report = engine.migrate()
    _display_report(report)

    if not report.success:
        raise click.exceptions.Exit(EXIT_KEYS_FAILED)


def _display_dry_run(report: DryRunReport) -> None:
    echo_info("DRY RUN MODE - no data will be copied")
    click.echo(f"Total keys: {report.total_keys:,}")
    if report.pending_keys != report.total_keys:
        click.echo(f"Already migrated: {report.total_keys - report.pending_keys:,}")
    click.echo(f"Keys to migrate: {report.pending_keys:,}")

    if report.sample:
        groups = KeyScanner.group_by_type(report.sample)
        rows = [
            [info.name, info.type, info.ttl, info.size]
            for key_type in sorted(groups)
            for info in groups[key_type]
        ]
        print_table(f"Sample of {len(rows)} keys", ["Key", "Type", "TTL", "Size"], rows)

        summary = report.summary
        type_rows = [[key_type, count] for key_type, count in sorted(summary.type_counts.items())]
        type_rows.append(["total", summary.total_keys])
        print_table("Sampled keys by type", ["Type", "Keys"], type_rows)


def _display_report(report: MigrationReport) -> None:
    stats = report.stats
    click.echo()
    if report.skipped_keys:
        echo_info(f"Skipped {report.skipped_keys:,} keys completed by a previous run")

    if report.verification is not None:
        display_verification(report.verification)

    if report.cancelled:
        echo_warning("Migration was interrupted; run the command again to resume")
    elif report.success:
        echo_success(
            f"Migrated {stats.successful_keys:,} keys "
            f"({format_bytes(stats.bytes_transferred)}) in {format_duration(stats.duration)}"
        )
    else:
        echo_error(
            f"Migration finished with {stats.failed_keys:,} failed keys"
            + (
                f" and {report.verification.failed_keys:,} keys failing verification"
                if report.verification
                else ""
            )
        )


def display_verification(summary: VerificationSummary) -> None:
    """Print verification counts and a table of the keys that failed."""
    click.echo(
        f"Verification: {summary.verified_keys:,}/{summary.total_keys:,} keys verified "
        f"({summary.success_rate:.2f}%), {summary.mismatched_keys:,} mismatched"
    )

    failed = summary.failed_results
    if not failed:
        return

    rows = [[r.key, r.data_type or "-", r.message] for r in failed[:MISMATCH_TABLE_LIMIT]]
    print_table("Verification failures", ["Key", "Type", "Problem"], rows)
    if len(failed) > MISMATCH_TABLE_LIMIT:
        click.echo(f"... and {len(failed) - MISMATCH_TABLE_LIMIT} more")
