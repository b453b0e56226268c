"""Progress bar for key transfers.

This module provides a tqdm progress bar that advances once per migrated
key and shows succeeded and failed counts alongside.
"""

import threading

from tqdm import tqdm

from kv_migration.utils.logging import get_logger

logger = get_logger(__name__)


class KeyProgressTracker:
    """Displays per-key migration progress.

    Safe to update from worker threads. With ``enable=False`` it only
    counts, which suits CI and tests.
    """

    def __init__(self, total_keys: int, enable: bool = True, description: str = "Migrating keys"):
        """Initialize progress tracker.

        Args:
            total_keys: Number of keys the bar runs up to
            enable: Whether to display a progress bar
            description: Label shown in front of the bar
        """
        self.total_keys = total_keys
        self.enable = enable
        self.succeeded = 0
        self.failed = 0
        self._lock = threading.Lock()
        self.bar: tqdm | None = None

        if self.enable:
            self.bar = tqdm(
                total=total_keys,
                desc=description,
                unit="key",
                leave=True,
                bar_format="{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]{postfix}",
            )

    def update(self, success: bool) -> None:
        """Advance by one finished key."""
        with self._lock:
            if success:
                self.succeeded += 1
            else:
                self.failed += 1
            if self.bar:
                self.bar.update(1)
                self.bar.set_postfix(ok=self.succeeded, failed=self.failed, refresh=False)

    def close(self) -> None:
        with self._lock:
            if self.bar:
                self.bar.close()
                self.bar = None
        logger.debug(
            "progress_tracker_closed",
            succeeded=self.succeeded,
            failed=self.failed,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
