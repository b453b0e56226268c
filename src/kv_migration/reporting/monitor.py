"""Thread-safe migration statistics.

``ProgressMonitor`` owns the counters of one migration run and the status
state machine::

    NOT_STARTED -> RUNNING -> COMPLETED
                           -> FAILED

Updates are ignored unless the run is RUNNING, so late results from
workers that finish after ``complete()`` or ``fail()`` do not change the
frozen statistics.
"""

import threading
import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

from rich.console import Console
from rich.table import Table

from kv_migration.reporting.colors import MigrationColors

# Failed keys listed individually in the summary
SUMMARY_FAILED_KEY_LIMIT = 10


class MigrationStatus(Enum):
    """Lifecycle of a migration run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    # Reserved; nothing transitions into it yet
    PAUSED = "paused"

    def __str__(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    MigrationStatus.NOT_STARTED: "Not Started",
    MigrationStatus.RUNNING: "Running",
    MigrationStatus.COMPLETED: "Completed",
    MigrationStatus.FAILED: "Failed",
    MigrationStatus.PAUSED: "Paused",
}

_STATUS_STYLES = {
    MigrationStatus.NOT_STARTED: MigrationColors.PENDING,
    MigrationStatus.RUNNING: MigrationColors.RUNNING,
    MigrationStatus.COMPLETED: MigrationColors.COMPLETE,
    MigrationStatus.FAILED: MigrationColors.FAILED,
    MigrationStatus.PAUSED: MigrationColors.SKIPPED,
}


@dataclass
class MigrationStats:
    """Counters for one migration run.

    ``processed_keys`` always equals ``successful_keys + failed_keys``.
    """

    total_keys: int = 0
    processed_keys: int = 0
    successful_keys: int = 0
    failed_keys: int = 0
    bytes_transferred: int = 0
    duration: float = 0.0
    throughput: float = 0.0
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def success_rate(self) -> float:
        return calculate_success_rate(self.successful_keys, self.total_keys)

    @property
    def percentage(self) -> float:
        if self.total_keys == 0:
            return 0.0
        return self.processed_keys / self.total_keys * 100


@dataclass(frozen=True)
class FailureRecord:
    """One failed key and why it failed."""

    key: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class ProgressMonitor:
    """Counters, status and error list shared by all migration workers.

    One lock guards all state, so readers are serialized with each other
    as well as with writers.
    """

    def __init__(self, console: Console | None = None):
        """Initialize monitor.

        Args:
            console: Rich console for ``print_progress`` and ``print_summary``
        """
        self._lock = threading.RLock()
        self._console = console or Console()
        self._status = MigrationStatus.NOT_STARTED
        self._stats = MigrationStats()
        self._failures: list[FailureRecord] = []
        self._started_at = 0.0
        self._last_report = 0.0

    def initialize(self, total_keys: int) -> None:
        """Start a run over ``total_keys`` keys.

        Calling this on a running monitor starts over: every counter, the
        start time and the failure list are reset.
        """
        with self._lock:
            now = time.monotonic()
            self._stats = MigrationStats(total_keys=total_keys, start_time=datetime.now(UTC))
            self._failures = []
            self._started_at = now
            self._last_report = now
            self._status = MigrationStatus.RUNNING

    def start(self, total_keys: int) -> None:
        self.initialize(total_keys)

    def record_success(self, key: str, size_bytes: int) -> None:
        with self._lock:
            if self._status is not MigrationStatus.RUNNING:
                return
            self._stats.processed_keys += 1
            self._stats.successful_keys += 1
            self._stats.bytes_transferred += size_bytes

    def record_failure(self, key: str, err: BaseException | str) -> None:
        with self._lock:
            if self._status is not MigrationStatus.RUNNING:
                return
            self._stats.processed_keys += 1
            self._stats.failed_keys += 1
            self._failures.append(FailureRecord(key=key, message=str(err)))

    def increment_processed(self) -> None:
        """Count a success without a key or size attached."""
        with self._lock:
            if self._status is not MigrationStatus.RUNNING:
                return
            self._stats.processed_keys += 1
            self._stats.successful_keys += 1

    def increment_failed(self) -> None:
        """Count a failure without a key or error attached."""
        with self._lock:
            if self._status is not MigrationStatus.RUNNING:
                return
            self._stats.processed_keys += 1
            self._stats.failed_keys += 1

    def complete(self) -> None:
        self._finish(MigrationStatus.COMPLETED)

    def fail(self) -> None:
        self._finish(MigrationStatus.FAILED)

    def _finish(self, status: MigrationStatus) -> None:
        with self._lock:
            if self._status is not MigrationStatus.RUNNING:
                return
            self._stats.end_time = datetime.now(UTC)
            self._stats.duration = time.monotonic() - self._started_at
            self._stats.throughput = calculate_rate(
                self._stats.processed_keys, self._stats.duration
            )
            self._status = status

    def get_status(self) -> MigrationStatus:
        with self._lock:
            return self._status

    def get_statistics(self) -> MigrationStats:
        """Copy of the counters as last written."""
        with self._lock:
            return replace(self._stats)

    def get_stats(self) -> MigrationStats:
        """Copy of the counters with live duration and throughput while running."""
        with self._lock:
            stats = replace(self._stats)
            if self._status is MigrationStatus.RUNNING:
                stats.duration = time.monotonic() - self._started_at
                stats.throughput = calculate_rate(stats.processed_keys, stats.duration)
            return stats

    def get_errors(self) -> list[FailureRecord]:
        with self._lock:
            return list(self._failures)

    def get_failed_keys(self) -> list[str]:
        with self._lock:
            return [failure.key for failure in self._failures]

    def get_progress(self) -> tuple[int, int, int, float]:
        """Return ``(processed, total, failed, percentage)``."""
        with self._lock:
            return (
                self._stats.processed_keys,
                self._stats.total_keys,
                self._stats.failed_keys,
                self._stats.percentage,
            )

    def should_report(self, interval: float) -> bool:
        """Whether ``interval`` seconds have passed since the last report."""
        with self._lock:
            return time.monotonic() - self._last_report >= interval

    def mark_reported(self) -> None:
        with self._lock:
            self._last_report = time.monotonic()

    def print_progress(self) -> None:
        """Print a one-line progress update."""
        stats = self.get_stats()
        self._console.print(
            f"[{MigrationColors.PROGRESS}]Progress:[/] "
            f"{stats.processed_keys:,}/{stats.total_keys:,} "
            f"({stats.percentage:.1f}%) - "
            f"[{MigrationColors.SUCCESS}]{stats.successful_keys:,} succeeded[/], "
            f"[{MigrationColors.ERROR}]{stats.failed_keys:,} failed[/] - "
            f"[{MigrationColors.RATE}]{stats.throughput:.1f} keys/sec[/]"
        )

    def print_summary(self) -> None:
        """Print the final statistics table and the failed keys."""
        stats = self.get_stats()
        status = self.get_status()
        failures = self.get_errors()

        table = Table(title="Migration Summary", border_style=MigrationColors.BORDER)
        table.add_column("Metric", style=MigrationColors.LABEL)
        table.add_column("Value", justify="right")

        table.add_row("Status", f"[{_STATUS_STYLES[status]}]{status}[/]")
        table.add_row("Total keys", f"{stats.total_keys:,}")
        table.add_row("Processed keys", f"{stats.processed_keys:,}")
        table.add_row("Successful keys", f"[{MigrationColors.SUCCESS}]{stats.successful_keys:,}[/]")
        table.add_row("Failed keys", f"[{MigrationColors.ERROR}]{stats.failed_keys:,}[/]")
        table.add_row("Success rate", f"{stats.success_rate:.2f}%")
        table.add_row("Data transferred", format_bytes(stats.bytes_transferred))
        table.add_row("Duration", f"{stats.duration:.2f}s")
        table.add_row("Throughput", f"{stats.throughput:.2f} keys/sec")

        self._console.print()
        self._console.print(table)

        if failures:
            self._console.print(f"\n[{MigrationColors.ERROR}]Failed keys:[/]")
            for failure in failures[:SUMMARY_FAILED_KEY_LIMIT]:
                self._console.print(f"  - {failure.key}: {failure.message}", markup=False)
            if len(failures) > SUMMARY_FAILED_KEY_LIMIT:
                self._console.print(
                    f"  ... and {len(failures) - SUMMARY_FAILED_KEY_LIMIT} more", markup=False
                )


def calculate_rate(count: int, seconds: float) -> float:
    """Items per second, 0 when no time has elapsed."""
    if seconds <= 0:
        return 0.0
    return count / seconds


def calculate_success_rate(successful: int, total: int) -> float:
    """Percentage of ``total`` that succeeded, 0 when total is 0."""
    if total <= 0:
        return 0.0
    return successful / total * 100


def format_bytes(num_bytes: int) -> str:
    """Human readable size using 1024-based units, e.g. ``1.5 KB``."""
    unit = 1024
    if num_bytes < unit:
        return f"{num_bytes} B"
    div, exp = unit, 0
    n = num_bytes // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{num_bytes / div:.1f} {'KMGTPE'[exp]}B"
