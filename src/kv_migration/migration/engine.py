"""Migration orchestration.

``MigrationEngine`` drives one run from the source store to the target
store:

1. Connect to and ping both stores, retrying transient failures
2. Discover the keys to migrate and skip those a previous run finished
3. Copy keys in batches on a thread pool
4. Verify the copied keys once every batch has drained
5. Report, persist or clear resume state, and disconnect

Failures of individual keys are counted and reported but never stop the
run, unless ``continue_on_error`` is off. Only failing to reach a store
or list its keys is fatal.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from rich.console import Console

from kv_migration.client.base_client import BaseStoreClient
from kv_migration.client.exceptions import CheckpointError, RecoveryError, StoreConnectionError
from kv_migration.client.timeouts import TimeoutPolicy
from kv_migration.config import MigrationConfig
from kv_migration.migration.errors import ErrorAggregator, ErrorType, MigrationError, wrap_error
from kv_migration.migration.processor import DataTypeProcessor
from kv_migration.migration.recovery import ConnectionRecovery, RecoverableClient, RetryConfig
from kv_migration.migration.resume import ResumeState, ResumeStore
from kv_migration.migration.scanner import KeyInfo, KeyScanner, ScanSummary
from kv_migration.migration.shutdown import GracefulShutdownManager
from kv_migration.migration.verifier import DataVerifier, VerificationSummary
from kv_migration.reporting.monitor import MigrationStats, MigrationStatus, ProgressMonitor
from kv_migration.reporting.progress import KeyProgressTracker
from kv_migration.utils.logging import MigrationLogger

# Resume state is saved each time this many more keys have completed
RESUME_SAVE_INTERVAL = 100

# How often the progress reporter checks whether a report is due
PROGRESS_TICK_SECONDS = 0.5


@dataclass
class MigrationReport:
    """Outcome of a migration run."""

    stats: MigrationStats
    status: MigrationStatus
    verification: VerificationSummary | None = None
    errors: ErrorAggregator = field(default_factory=ErrorAggregator)
    cancelled: bool = False
    skipped_keys: int = 0

    @property
    def success(self) -> bool:
        """Every key copied and, if verification ran, every key verified."""
        if self.status is not MigrationStatus.COMPLETED or self.stats.failed_keys:
            return False
        return self.verification is None or self.verification.failed_keys == 0


@dataclass
class DryRunReport:
    """Keys a migration would copy, with details and type counts for a sample."""

    total_keys: int
    pending_keys: int
    sample: list[KeyInfo]
    summary: ScanSummary = field(default_factory=ScanSummary)


class MigrationEngine:
    """Runs migrations between two stores."""

    def __init__(
        self,
        source: BaseStoreClient,
        target: BaseStoreClient,
        config: MigrationConfig,
        logger: MigrationLogger,
        resume_store: ResumeStore | None = None,
        recovery: ConnectionRecovery | None = None,
        console: Console | None = None,
    ):
        """Initialize migration engine.

        Args:
            source: Store to copy from
            target: Store to copy to
            config: Application configuration
            logger: Migration logger
            resume_store: Where progress is persisted (None disables resume)
            recovery: Retry handler (built from ``retry_attempts`` if omitted)
            console: Console for the progress line and summary table
        """
        self.config = config
        self.engine_config = config.engine
        self.logger = logger

        self.recovery = recovery or ConnectionRecovery(
            RetryConfig.from_attempts(config.migration.retry_attempts), logger
        )
        self.source = RecoverableClient(source, self.recovery, logger, label="Redis")
        self.target = RecoverableClient(target, self.recovery, logger, label="Valkey")

        self.processor = DataTypeProcessor(logger, TimeoutPolicy(config.migration.timeout_config))
        self.verifier = DataVerifier(logger)
        self.scanner = KeyScanner(logger, config.migration.collection_patterns)
        self.monitor = ProgressMonitor(console=console)
        self.shutdown_manager = GracefulShutdownManager(logger, self.engine_config.shutdown_timeout)

        self.resume_store = resume_store
        self.resume_state = self._load_resume_state()
        self.errors = ErrorAggregator()

        self._errors_lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._saved_bucket = self.resume_state.get_processed_count() // RESUME_SAVE_INTERVAL
        self._tracker: KeyProgressTracker | None = None

        self.shutdown_manager.register_shutdown_handler(self.save_resume_state)

    def _load_resume_state(self) -> ResumeState:
        if self.resume_store is None:
            return ResumeState()
        try:
            return self.resume_store.load()
        except CheckpointError as e:
            self.logger.warning("resume_state_load_failed", error=str(e), action="starting fresh")
            return ResumeState()

    # Connection handling

    def connect(self) -> None:
        """Connect to and ping both stores.

        Raises:
            StoreConnectionError: If either store stays unreachable after retries
        """
        self.logger.info("connecting_databases")
        for role, client in (("source", self.source), ("target", self.target)):
            try:
                client.connect()
                client.ping()
            except Exception as e:
                raise StoreConnectionError(
                    f"failed to connect to {role} database at {client.host}:{client.port}: {e}"
                ) from e
        self.logger.info("databases_connected")

    def disconnect(self) -> None:
        for client in (self.source, self.target):
            try:
                client.disconnect()
            except Exception as e:
                self.logger.warning("disconnect_failed", store=client.label, error=str(e))

    def discover_keys(self) -> list[str]:
        """List the keys in scope on the source.

        Raises:
            MigrationError: If the source cannot list its keys
        """
        try:
            keys = self.scanner.scan_all_keys(self.source)
        except Exception as e:
            raise wrap_error(e, "key discovery") from e
        self.logger.info("keys_discovered", total_keys=len(keys))
        return keys

    # Migration

    def migrate(self) -> MigrationReport:
        """Run a full migration.

        Returns:
            MigrationReport describing the run

        Raises:
            StoreConnectionError: If a store cannot be reached
            MigrationError: If key discovery fails
        """
        self.logger.info(
            "migration_started",
            source=f"{self.source.host}:{self.source.port}/{self.source.database}",
            target=f"{self.target.host}:{self.target.port}/{self.target.database}",
            batch_size=self.engine_config.batch_size,
            max_concurrency=self.engine_config.max_concurrency,
        )
        self.shutdown_manager.start_signal_handler()

        try:
            self.connect()
            keys = self.discover_keys()

            pending = [key for key in keys if not self.resume_state.is_processed(key)]
            skipped = len(keys) - len(pending)
            if skipped:
                self.logger.info("resume_skipping_keys", skipped_keys=skipped, pending_keys=len(pending))

            self.monitor.initialize(len(pending))
            self.resume_state.total_keys = len(keys)

            stop_reporter = threading.Event()
            reporter = threading.Thread(
                target=self._report_progress, args=(stop_reporter,), name="progress", daemon=True
            )
            reporter.start()
            try:
                stopped = self._perform_migration(pending)
            finally:
                stop_reporter.set()
                reporter.join()

            cancelled = self.shutdown_manager.is_shutting_down()
            if stopped or cancelled:
                self.monitor.fail()
            else:
                self.monitor.complete()

            verification = None
            if self.engine_config.verify_after_migration and not (stopped or cancelled):
                verification = self.verify_keys(pending)

            report = MigrationReport(
                stats=self.monitor.get_stats(),
                status=self.monitor.get_status(),
                verification=verification,
                errors=self.errors,
                cancelled=cancelled,
                skipped_keys=skipped,
            )

            if report.success:
                self._clear_resume_state()
            else:
                self.save_resume_state()

            if self.errors.has_critical_errors():
                critical = self.errors.get_critical_errors()
                self.logger.warning(
                    "unclassified_errors", count=len(critical), first_error=str(critical[0])
                )
            self.logger.log_summary(report.stats)
            self.monitor.print_summary()
            self.logger.info(
                "migration_finished",
                status=str(report.status),
                success=report.success,
                errors=self.errors.count(),
            )
            return report
        finally:
            self.shutdown_manager.stop_signal_handler()
            self.disconnect()

    def _perform_migration(self, keys: list[str]) -> bool:
        """Copy ``keys`` batch by batch.

        Returns:
            True if the run stopped before all keys were attempted
        """
        batch_size = self.engine_config.batch_size
        self._tracker = KeyProgressTracker(len(keys), enable=self.engine_config.show_progress_bar)

        try:
            with ThreadPoolExecutor(
                max_workers=self.engine_config.max_concurrency, thread_name_prefix="migrate"
            ) as executor:
                for start in range(0, len(keys), batch_size):
                    if self.shutdown_manager.is_shutting_down():
                        self.logger.info(
                            "migration_cancelled", remaining_keys=len(keys) - start
                        )
                        return True

                    batch = keys[start : start + batch_size]
                    results = list(executor.map(self.migrate_key, batch))

                    if not self.engine_config.continue_on_error and not all(results):
                        self.logger.error(
                            "migration_stopped_on_error",
                            failed_keys=results.count(False),
                            remaining_keys=len(keys) - start - len(batch),
                        )
                        return True
        finally:
            self._tracker.close()
            self._tracker = None

        return False

    def migrate_key(self, key: str) -> bool:
        """Copy one key and record the outcome.

        Returns:
            True if the key was copied completely
        """
        try:
            key_type = self.source.get_key_type(key)
            outcome = self.processor.process_key(key, key_type, self.source, self.target)
        except Exception as e:
            err = wrap_error(e, "key processing").with_key(key)
            recovery_error = _find_recovery_error(e)
            if recovery_error is not None:
                # The retry layer has already given up on this key
                err.with_metadata("attempts", recovery_error.attempts).with_retryable(False)
            with self._errors_lock:
                self.errors.add(err)
            self.monitor.record_failure(key, err)
            if self._tracker:
                self._tracker.update(False)
            return False

        self.resume_state.mark_processed(key)
        self.monitor.record_success(key, outcome.size)
        if self._tracker:
            self._tracker.update(True)
        self._maybe_save_resume_state()
        return True

    def _report_progress(self, stop: threading.Event) -> None:
        interval = self.engine_config.progress_interval
        while not stop.wait(min(interval, PROGRESS_TICK_SECONDS)):
            if not self.monitor.should_report(interval):
                continue
            stats = self.monitor.get_stats()
            self.logger.log_progress(
                stats.total_keys, stats.processed_keys, stats.failed_keys, stats.throughput
            )
            self.monitor.mark_reported()

    # Verification

    def verify_keys(self, keys: list[str]) -> VerificationSummary:
        """Verify ``keys`` and add every failure to the error list."""
        summary = self.verifier.verify_all_keys(keys, self.source, self.target)
        for result in summary.failed_results:
            err = MigrationError(
                ErrorType.DATA, "verification", f"verification failed: {result.message}", key=result.key
            )
            with self._errors_lock:
                self.errors.add(err)
        return summary

    def verify_only(self) -> VerificationSummary:
        """Connect, discover the source keys and verify them against the target.

        Raises:
            StoreConnectionError: If a store cannot be reached
            MigrationError: If key discovery fails
        """
        try:
            self.connect()
            keys = self.discover_keys()
            return self.verifier.verify_all_keys(keys, self.source, self.target)
        finally:
            self.disconnect()

    def dry_run(self, sample: int = 10) -> DryRunReport:
        """Discover keys without copying anything.

        Args:
            sample: Number of keys to describe in detail

        Raises:
            StoreConnectionError: If a store cannot be reached
            MigrationError: If key discovery fails
        """
        try:
            self.connect()
            keys = self.discover_keys()
            pending = [key for key in keys if not self.resume_state.is_processed(key)]
            start = time.perf_counter()
            infos = self.scanner.scan_key_info(self.source, pending[:sample])
            summary = self.scanner.summarize(infos, scan_duration=time.perf_counter() - start)
            self.logger.info(
                "dry_run_completed",
                total_keys=len(keys),
                pending_keys=len(pending),
                sample=len(infos),
                sample_types=summary.type_counts,
            )
            return DryRunReport(
                total_keys=len(keys), pending_keys=len(pending), sample=infos, summary=summary
            )
        finally:
            self.disconnect()

    # Resume state

    def _maybe_save_resume_state(self) -> None:
        if self.resume_store is None:
            return
        bucket = self.resume_state.get_processed_count() // RESUME_SAVE_INTERVAL
        with self._save_lock:
            if bucket <= self._saved_bucket:
                return
            self._saved_bucket = bucket
        self.save_resume_state()

    def save_resume_state(self) -> None:
        """Persist the keys completed so far; failures are logged, not raised."""
        if self.resume_store is None:
            return
        try:
            self.resume_store.save(self.resume_state)
        except CheckpointError as e:
            self.logger.warning("resume_state_save_failed", error=str(e))

    def _clear_resume_state(self) -> None:
        if self.resume_store is None:
            return
        try:
            self.resume_store.clear()
        except CheckpointError as e:
            self.logger.warning("resume_state_clear_failed", error=str(e))

    def shutdown(self) -> None:
        """Ask a running migration to stop at the next batch boundary."""
        self.logger.info("shutdown_requested")
        self.shutdown_manager.initiate_shutdown()

    def get_stats(self) -> MigrationStats:
        return self.monitor.get_stats()


def _find_recovery_error(err: BaseException | None) -> RecoveryError | None:
    """The retry-layer error in ``err``'s cause chain, if any."""
    seen = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, RecoveryError):
            return err
        seen.add(id(err))
        err = err.__cause__
    return None
