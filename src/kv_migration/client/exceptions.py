"""Custom exceptions for KV Bridge.

This module defines exception classes for handling the error conditions
that can occur while talking to the source and target stores, moving
individual keys, and persisting resume state.
"""


class KVMigrationError(Exception):
    """Base exception for all KV migration tool errors."""

    pass


class ConfigurationError(KVMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class StateError(KVMigrationError):
    """Raised when state management errors occur."""

    pass


class CheckpointError(StateError):
    """Raised when resume state cannot be loaded or saved."""

    pass


class StoreError(KVMigrationError):
    """Base class for errors reported by a store client."""

    def __init__(self, message: str, key: str | None = None):
        """Initialize store error.

        Args:
            message: Error message
            key: Key the failing operation was addressing, if any
        """
        self.message = message
        self.key = key
        super().__init__(message)


class StoreConnectionError(StoreError):
    """Raised when a store cannot be reached (refused, reset, timed out)."""

    pass


class KeyNotFoundError(StoreError):
    """Raised when a key does not exist in the store being read."""

    pass


class TransferError(KVMigrationError):
    """Raised when a single key cannot be copied from source to target."""

    def __init__(self, message: str, key: str | None = None, data_type: str | None = None):
        """Initialize transfer error.

        Args:
            message: Error message
            key: Key being transferred
            data_type: Declared store type of the key
        """
        self.key = key
        self.data_type = data_type
        super().__init__(message)


class TypeMismatchError(TransferError):
    """Raised when a fetched value does not match the declared key type.

    This signals data or protocol drift rather than a transient fault and
    is never retried.
    """

    pass


class UnsupportedTypeError(TransferError):
    """Raised for store types the migrator does not know how to copy."""

    pass


class RecoveryError(KVMigrationError):
    """Base class for errors raised by the retry layer."""

    def __init__(self, message: str, operation: str, attempts: int):
        """Initialize recovery error.

        Args:
            message: Error message
            operation: Name of the operation that was retried
            attempts: Number of invocations made before giving up
        """
        self.operation = operation
        self.attempts = attempts
        super().__init__(message)


class NonRetryableError(RecoveryError):
    """Raised when an operation fails with an error that must not be retried."""

    pass


class RetryExhaustedError(RecoveryError):
    """Raised when every allowed attempt of an operation failed."""

    pass
