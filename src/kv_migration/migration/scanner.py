"""Key discovery on the source store."""

import fnmatch
import time
from collections import Counter
from dataclasses import dataclass, field

from kv_migration.client.base_client import BaseStoreClient
from kv_migration.client.exceptions import StoreError
from kv_migration.utils.logging import MigrationLogger


@dataclass(frozen=True)
class KeyInfo:
    """Type, TTL and size of one discovered key."""

    name: str
    type: str
    ttl: int = -1
    size: int = 0


@dataclass
class ScanSummary:
    total_keys: int = 0
    type_counts: dict[str, int] = field(default_factory=dict)
    total_size: int = 0
    scan_duration: float = 0.0


class KeyScanner:
    """Lists the keys to migrate.

    With ``patterns`` set, only keys matching at least one glob pattern are
    returned; otherwise every key is.
    """

    def __init__(self, logger: MigrationLogger, patterns: list[str] | None = None):
        self.logger = logger
        self.patterns = list(patterns or [])

    def matches(self, key: str) -> bool:
        if not self.patterns:
            return True
        return any(fnmatch.fnmatchcase(key, pattern) for pattern in self.patterns)

    def scan_all_keys(self, client: BaseStoreClient) -> list[str]:
        """Return every key on ``client`` selected by the patterns.

        Raises:
            StoreError: If the key listing fails
        """
        start = time.perf_counter()
        try:
            keys = client.get_all_keys()
        except Exception as e:
            raise StoreError(f"failed to get all keys: {e}") from e

        selected = [key for key in keys if self.matches(key)]
        self.logger.info(
            "keys_scanned",
            total_keys=len(keys),
            selected_keys=len(selected),
            patterns=self.patterns,
            duration=f"{time.perf_counter() - start:.3f}s",
        )
        return selected

    def scan_key_info(self, client: BaseStoreClient, keys: list[str]) -> list[KeyInfo]:
        """Look up type, TTL and size for each key.

        A key whose type cannot be read is left out; TTL and size lookups
        that fail fall back to -1 and 0.
        """
        infos = []
        for key in keys:
            try:
                key_type = client.get_key_type(key)
            except Exception as e:
                self.logger.warning("key_type_lookup_failed", key=key, error=str(e))
                continue

            try:
                ttl = client.get_ttl(key)
            except Exception:
                ttl = -1

            try:
                size = client.estimate_size(key, key_type)
            except Exception:
                size = 0

            infos.append(KeyInfo(name=key, type=key_type, ttl=ttl, size=size))
        return infos

    @staticmethod
    def group_by_type(infos: list[KeyInfo]) -> dict[str, list[KeyInfo]]:
        groups: dict[str, list[KeyInfo]] = {}
        for info in infos:
            groups.setdefault(info.type, []).append(info)
        return groups

    @staticmethod
    def summarize(infos: list[KeyInfo], scan_duration: float = 0.0) -> ScanSummary:
        return ScanSummary(
            total_keys=len(infos),
            type_counts=dict(Counter(info.type for info in infos)),
            total_size=sum(info.size for info in infos),
            scan_duration=scan_duration,
        )
