"""Per-type key transfer.

``DataTypeProcessor`` copies one key from the source store to the target
store: it reads the typed value, checks it against the declared key type,
writes it, and carries the TTL over. Every attempt is reported through
``MigrationLogger.log_key_transfer``.
"""

import time
from dataclasses import dataclass

from kv_migration.client.base_client import BaseStoreClient
from kv_migration.client.exceptions import TransferError, TypeMismatchError, UnsupportedTypeError
from kv_migration.client.timeouts import TimeoutPolicy
from kv_migration.utils.logging import MigrationLogger, get_logger
from kv_migration.values import (
    HASH,
    LIST,
    SET,
    STRING,
    ZSET,
    HashValue,
    KeyValue,
    ListValue,
    SetValue,
    SortedSetValue,
    StringValue,
)

logger = get_logger(__name__)

# Human-readable names used in error messages
TYPE_LABELS = {
    STRING: "string",
    HASH: "hash",
    LIST: "list",
    SET: "set",
    ZSET: "sorted set",
}


@dataclass
class TransferOutcome:
    """Result of copying a single key."""

    key: str
    data_type: str
    success: bool
    size: int = 0
    duration: float = 0.0
    error_message: str = ""


class DataTypeProcessor:
    """Copies keys between stores, dispatching on the key's data type.

    The processor does not retry. Read and write failures raise
    ``TransferError`` so the caller can decide whether to retry through
    ``ConnectionRecovery``; a value of the wrong type raises
    ``TypeMismatchError``, which callers must not retry.
    """

    def __init__(self, logger: MigrationLogger, timeout_policy: TimeoutPolicy | None = None):
        """Initialize processor.

        Args:
            logger: Migration logger
            timeout_policy: Policy whose threshold and multiplier drive the
                large data notice (omit to disable the notice)
        """
        self.logger = logger
        self.timeouts = timeout_policy

    def process_key(
        self,
        key: str,
        key_type: str,
        source: BaseStoreClient,
        target: BaseStoreClient,
    ) -> TransferOutcome:
        """Copy one key of the declared type.

        Args:
            key: Key to copy
            key_type: Type reported by the source store
            source: Store to read from
            target: Store to write to

        Returns:
            TransferOutcome for the key

        Raises:
            UnsupportedTypeError: If the type is not one of the five store types
            TypeMismatchError: If the stored value is not of the declared type
            TransferError: If reading or writing the value fails
        """
        handlers = {
            STRING: self.process_string,
            HASH: self.process_hash,
            LIST: self.process_list,
            SET: self.process_set,
            ZSET: self.process_sorted_set,
        }
        handler = handlers.get(key_type)
        if handler is None:
            raise UnsupportedTypeError(f"unsupported key type: {key_type}", key=key, data_type=key_type)
        return handler(key, source, target)

    def process_string(self, key: str, source: BaseStoreClient, target: BaseStoreClient) -> TransferOutcome:
        return self._transfer(key, STRING, StringValue, source, target)

    def process_hash(self, key: str, source: BaseStoreClient, target: BaseStoreClient) -> TransferOutcome:
        return self._transfer(key, HASH, HashValue, source, target)

    def process_list(self, key: str, source: BaseStoreClient, target: BaseStoreClient) -> TransferOutcome:
        return self._transfer(key, LIST, ListValue, source, target)

    def process_set(self, key: str, source: BaseStoreClient, target: BaseStoreClient) -> TransferOutcome:
        return self._transfer(key, SET, SetValue, source, target)

    def process_sorted_set(
        self, key: str, source: BaseStoreClient, target: BaseStoreClient
    ) -> TransferOutcome:
        return self._transfer(key, ZSET, SortedSetValue, source, target)

    def _transfer(
        self,
        key: str,
        data_type: str,
        expected: type[KeyValue],
        source: BaseStoreClient,
        target: BaseStoreClient,
    ) -> TransferOutcome:
        start = time.perf_counter()
        label = TYPE_LABELS[data_type]

        try:
            value = source.get_value(key)
        except Exception as e:
            message = f"failed to get {label} value for key {key}: {e}"
            self._log_failure(key, data_type, 0, start, message)
            raise TransferError(message, key=key, data_type=data_type) from e

        if not isinstance(value, expected):
            message = (
                f"expected {label} value for key {key}, got {type(value).__name__}"
            )
            self._log_failure(key, data_type, 0, start, message)
            raise TypeMismatchError(message, key=key, data_type=data_type)

        size = value.size
        self._signal_large_data(key, data_type, size)

        try:
            ttl = source.get_ttl(key)
        except Exception as e:
            self.logger.warning("ttl_read_failed", key=key, error=str(e))
            ttl = -1

        try:
            target.set_value(key, value)
        except Exception as e:
            message = f"failed to set {label} value for key {key}: {e}"
            self._log_failure(key, data_type, size, start, message)
            raise TransferError(message, key=key, data_type=data_type) from e

        if ttl > 0:
            try:
                target.set_ttl(key, ttl)
            except Exception as e:
                self.logger.warning("ttl_write_failed", key=key, ttl=ttl, error=str(e))

        duration = time.perf_counter() - start
        self.logger.log_key_transfer(key, data_type, size, True, duration)
        return TransferOutcome(key=key, data_type=data_type, success=True, size=size, duration=duration)

    def _signal_large_data(self, key: str, data_type: str, size: int) -> None:
        if self.timeouts is None or not self.timeouts.is_large_data(size):
            return
        self.logger.info(
            "large_data_detected",
            key=key,
            data_type=data_type,
            size=size,
            threshold=self.timeouts.threshold,
            timeout_multiplier=f"{self.timeouts.multiplier:.1f}x",
        )

    def _log_failure(self, key: str, data_type: str, size: int, start: float, message: str) -> None:
        self.logger.log_key_transfer(
            key, data_type, size, False, time.perf_counter() - start, error=message
        )


def estimate_data_size(client: BaseStoreClient, key: str, key_type: str) -> int:
    """Size of a key's value as reported by the store, without fetching it.

    Returns 0 when the store cannot answer.
    """
    try:
        return client.estimate_size(key, key_type)
    except Exception as e:
        logger.debug("size_estimate_failed", key=key, data_type=key_type, error=str(e))
        return 0
