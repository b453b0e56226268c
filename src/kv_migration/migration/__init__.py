"""
Migration module for KV Bridge.

This module provides per-type key transfer, retry handling, resume state,
verification, and the engine that coordinates them.
"""

from kv_migration.migration.engine import DryRunReport, MigrationEngine, MigrationReport
from kv_migration.migration.errors import ErrorAggregator, ErrorType, MigrationError
from kv_migration.migration.processor import DataTypeProcessor, TransferOutcome
from kv_migration.migration.recovery import ConnectionRecovery, RecoverableClient, RetryConfig
from kv_migration.migration.resume import ResumeState, ResumeStore
from kv_migration.migration.verifier import DataVerifier, VerificationResult, VerificationSummary

__all__ = [
    # Engine
    "MigrationEngine",
    "MigrationReport",
    "DryRunReport",
    # Transfer and recovery
    "DataTypeProcessor",
    "TransferOutcome",
    "ConnectionRecovery",
    "RecoverableClient",
    "RetryConfig",
    # Resume state
    "ResumeState",
    "ResumeStore",
    # Verification
    "DataVerifier",
    "VerificationResult",
    "VerificationSummary",
    # Errors
    "ErrorAggregator",
    "ErrorType",
    "MigrationError",
]
