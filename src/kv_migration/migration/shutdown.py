"""Graceful shutdown on SIGINT and SIGTERM.

The first signal (or an explicit ``initiate_shutdown``) sets the shutdown
flag, which the engine checks between batches, and then runs the
registered handlers, such as saving resume state, within a time limit.
"""

import signal
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait

from kv_migration.utils.logging import MigrationLogger

ShutdownHandler = Callable[[], None]


class GracefulShutdownManager:
    """Coordinates an orderly stop of a migration run."""

    def __init__(self, logger: MigrationLogger, timeout: float = 30.0):
        """Initialize shutdown manager.

        Args:
            logger: Migration logger
            timeout: Seconds allowed for all shutdown handlers together
        """
        self.logger = logger
        self.timeout = timeout
        self._handlers: list[ShutdownHandler] = []
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._previous: dict[int, object] = {}

    def register_shutdown_handler(self, handler: ShutdownHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def start_signal_handler(self) -> bool:
        """Install SIGINT and SIGTERM handlers.

        Signal handlers can only be installed from the main thread; elsewhere
        this does nothing and returns False.
        """
        if threading.current_thread() is not threading.main_thread():
            self.logger.debug("signal_handler_skipped", reason="not main thread")
            return False

        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous[sig] = signal.signal(sig, self._handle_signal)
        return True

    def stop_signal_handler(self) -> None:
        """Restore the signal handlers that were active before."""
        if threading.current_thread() is not threading.main_thread():
            return
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()

    def _handle_signal(self, signum: int, frame) -> None:
        self.logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        # Handlers may block; keep them off the signal frame
        threading.Thread(target=self.initiate_shutdown, name="shutdown", daemon=True).start()

    def initiate_shutdown(self) -> None:
        """Set the shutdown flag and run every handler once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            handlers = list(self._handlers)

        self.logger.info("shutdown_initiated", handlers=len(handlers))
        self._run_handlers(handlers)

    def _run_handlers(self, handlers: list[ShutdownHandler]) -> None:
        if not handlers:
            self.logger.info("shutdown_completed", errors=0)
            return

        failures = 0
        executor = ThreadPoolExecutor(max_workers=len(handlers), thread_name_prefix="shutdown")
        try:
            futures = {executor.submit(handler): index for index, handler in enumerate(handlers)}
            done, pending = wait(futures, timeout=self.timeout)

            for future in done:
                err = future.exception()
                if err is not None:
                    failures += 1
                    self.logger.error(
                        "shutdown_handler_failed", handler=futures[future], error=str(err)
                    )
            for future in pending:
                failures += 1
                self.logger.warning(
                    "shutdown_handler_timed_out", handler=futures[future], timeout=self.timeout
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if failures:
            self.logger.error("shutdown_completed", errors=failures)
        else:
            self.logger.info("shutdown_completed", errors=0)

    def is_shutting_down(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown starts or ``timeout`` passes."""
        return self._event.wait(timeout)
