"""Reporting and progress tracking for KV migration."""

from kv_migration.reporting.monitor import MigrationStats, MigrationStatus, ProgressMonitor
from kv_migration.reporting.progress import KeyProgressTracker

__all__ = [
    "ProgressMonitor",
    "MigrationStats",
    "MigrationStatus",
    "KeyProgressTracker",
]
