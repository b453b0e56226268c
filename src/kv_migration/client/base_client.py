"""Base store client for KV Bridge.

This module defines the capability every store client offers to the
migration engine: connection management, key discovery, and typed value
reads and writes with TTL handling.
"""

from abc import ABC, abstractmethod
from typing import Any

from kv_migration.values import KeyValue


class BaseStoreClient(ABC):
    """Abstract key-value store client.

    Implementations raise ``StoreConnectionError`` for connectivity faults,
    ``KeyNotFoundError`` when reading a key that does not exist, and
    ``StoreError`` for anything else the server rejects.

    ``set_value`` must leave the key holding exactly the given value. For a
    zero-member collection that is whatever the store keeps for one: Redis
    and Valkey keep no key at all.
    """

    label: str = "store"
    host: str = ""
    port: int = 0
    database: int = 0

    @abstractmethod
    def connect(self) -> None:
        """Open the connection."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection."""

    @abstractmethod
    def ping(self) -> None:
        """Round-trip check; raises on failure."""

    @abstractmethod
    def get_all_keys(self) -> list[str]:
        """Return every key in the selected database."""

    @abstractmethod
    def get_key_type(self, key: str) -> str:
        """Return the store type name, or ``"none"`` for a missing key."""

    @abstractmethod
    def get_value(self, key: str) -> KeyValue:
        """Fetch the typed value held by a key."""

    @abstractmethod
    def set_value(self, key: str, value: KeyValue) -> None:
        """Replace the key's content with the given value."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Whether the key exists."""

    @abstractmethod
    def get_ttl(self, key: str) -> int:
        """Remaining TTL in seconds, -1 when the key does not expire."""

    @abstractmethod
    def set_ttl(self, key: str, ttl: int) -> None:
        """Set the key's TTL in seconds."""

    @abstractmethod
    def estimate_size(self, key: str, key_type: str) -> int:
        """Byte length or element count of a key without fetching its value."""

    def __enter__(self) -> "BaseStoreClient":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.disconnect()
