"""Timeout selection for store operations.

The policy maps a data type and a size to the socket timeout a client
should use for one call. It only reads its ``TimeoutConfig``; callers
share a single policy between threads.
"""

from kv_migration.config import TimeoutConfig
from kv_migration.values import HASH, LIST, SET, STRING, ZSET


class TimeoutPolicy:
    """Computes operation-specific timeouts from data type and size."""

    def __init__(self, config: TimeoutConfig | None = None):
        """Initialize timeout policy.

        Args:
            config: Timeout configuration (defaults apply when omitted)
        """
        self.config = config or TimeoutConfig()

    @property
    def multiplier(self) -> float:
        return self.config.large_data_multiplier

    @property
    def threshold(self) -> int:
        return self.config.large_data_threshold

    def base_timeout(self, data_type: str) -> float:
        """Return the unscaled timeout for a data type."""
        per_type = {
            STRING: self.config.string_operation,
            HASH: self.config.hash_operation,
            LIST: self.config.list_operation,
            SET: self.config.set_operation,
            ZSET: self.config.sorted_set_operation,
        }
        return per_type.get(data_type, self.config.default_operation)

    def is_large_data(self, size: int) -> bool:
        """Whether a value of this size counts as large."""
        return size > self.config.large_data_threshold

    def operation_timeout(self, data_type: str, size: int = 0) -> float:
        """Timeout in seconds for one operation.

        Args:
            data_type: Store type of the value being read or written
            size: Byte length (strings) or element count (collections)

        Returns:
            Base timeout for the type, multiplied for large data
        """
        timeout = self.base_timeout(data_type)
        if self.is_large_data(size):
            timeout *= self.config.large_data_multiplier
        return timeout
