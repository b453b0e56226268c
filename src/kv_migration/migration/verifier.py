"""Post-migration verification.

``DataVerifier`` compares each key in the target store with the source
and reports every discrepancy by name: the missing hash field, the list
index that differs, the sorted set member whose score changed. A key
passes only when it exists in the target, has the same type, and no
discrepancy was found.
"""

import time
from dataclasses import dataclass, field

from kv_migration.client.base_client import BaseStoreClient
from kv_migration.utils.logging import MigrationLogger
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

# Progress is logged each time this many keys have been verified
PROGRESS_LOG_INTERVAL = 1000


@dataclass
class VerificationResult:
    """Outcome of verifying one key."""

    key: str
    data_type: str = ""
    success: bool = False
    error_msg: str = ""
    mismatches: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def has_mismatches(self) -> bool:
        return len(self.mismatches) > 0

    @property
    def message(self) -> str:
        """The error message, or the mismatches joined into one line."""
        if self.error_msg:
            return self.error_msg
        return "; ".join(self.mismatches)


@dataclass
class VerificationSummary:
    """Counts and per-key results for a verification pass."""

    total_keys: int = 0
    verified_keys: int = 0
    failed_keys: int = 0
    mismatched_keys: int = 0
    results: list[VerificationResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Percentage of keys that verified."""
        if self.total_keys == 0:
            return 0.0
        return self.verified_keys / self.total_keys * 100

    @property
    def failed_results(self) -> list[VerificationResult]:
        return [r for r in self.results if not r.success]


class DataVerifier:
    """Compares keys between a source and a target store."""

    def __init__(self, logger: MigrationLogger):
        self.logger = logger

    def verify_key(
        self, key: str, source: BaseStoreClient, target: BaseStoreClient
    ) -> VerificationResult:
        """Verify one key.

        Store errors never escape; they are reported in ``error_msg``.

        Args:
            key: Key to verify
            source: Store the key was copied from
            target: Store the key was copied to

        Returns:
            VerificationResult for the key
        """
        start = time.perf_counter()
        result = VerificationResult(key=key)

        try:
            self._verify_into(result, key, source, target)
        finally:
            result.duration = time.perf_counter() - start

        if result.success:
            self.logger.debug("key_verified", key=key, data_type=result.data_type)
        else:
            self.logger.warning(
                "key_verification_failed",
                key=key,
                data_type=result.data_type,
                error=result.error_msg,
                mismatches=result.mismatches,
            )
        return result

    def _verify_into(
        self,
        result: VerificationResult,
        key: str,
        source: BaseStoreClient,
        target: BaseStoreClient,
    ) -> None:
        try:
            exists = target.exists(key)
        except Exception as e:
            result.error_msg = f"failed to check key existence in target: {e}"
            return

        if not exists:
            result.error_msg = "key does not exist in target database"
            return

        try:
            source_type = source.get_key_type(key)
        except Exception as e:
            result.error_msg = f"failed to get key type from source: {e}"
            return

        try:
            target_type = target.get_key_type(key)
        except Exception as e:
            result.error_msg = f"failed to get key type from target: {e}"
            return

        result.data_type = source_type

        if source_type != target_type:
            # Content of different types is not comparable
            result.mismatches.append(
                f"type mismatch: source={source_type}, target={target_type}"
            )
            return

        try:
            result.mismatches.extend(self.compare_key_content(key, source_type, source, target))
        except Exception as e:
            result.error_msg = f"failed to compare key content: {e}"
            return

        result.success = not result.mismatches

    def verify_key_exists(self, key: str, target: BaseStoreClient) -> bool:
        """Whether the key exists in the target; store errors propagate."""
        return target.exists(key)

    def compare_key_content(
        self,
        key: str,
        data_type: str,
        source: BaseStoreClient,
        target: BaseStoreClient,
    ) -> list[str]:
        """Fetch both values and list every discrepancy between them.

        Args:
            key: Key to compare
            data_type: Type both stores report for the key
            source: Source store
            target: Target store

        Returns:
            Mismatch descriptions, empty when the values are identical
        """
        source_value = source.get_value(key)
        target_value = target.get_value(key)
        return compare_values(data_type, source_value, target_value)

    def verify_all_keys(
        self, keys: list[str], source: BaseStoreClient, target: BaseStoreClient
    ) -> VerificationSummary:
        """Verify every key independently.

        Args:
            keys: Keys to verify
            source: Source store
            target: Target store

        Returns:
            VerificationSummary over all keys
        """
        summary = VerificationSummary(total_keys=len(keys))
        self.logger.info("verification_started", total_keys=len(keys))

        for i, key in enumerate(keys, start=1):
            result = self.verify_key(key, source, target)
            self.add_result(summary, result)

            if i % PROGRESS_LOG_INTERVAL == 0:
                self.logger.info(
                    "verification_progress",
                    verified=i,
                    total_keys=len(keys),
                    failed_keys=summary.failed_keys,
                )

        self.log_summary(summary)
        return summary

    @staticmethod
    def add_result(summary: VerificationSummary, result: VerificationResult) -> None:
        """Fold one key's result into a summary."""
        summary.results.append(result)
        if result.success:
            summary.verified_keys += 1
        else:
            summary.failed_keys += 1
            if result.has_mismatches:
                summary.mismatched_keys += 1

    def log_summary(self, summary: VerificationSummary) -> None:
        self.logger.info(
            "verification_completed",
            total_keys=summary.total_keys,
            verified_keys=summary.verified_keys,
            failed_keys=summary.failed_keys,
            mismatched_keys=summary.mismatched_keys,
            success_rate=f"{summary.success_rate:.2f}%",
        )


def compare_values(data_type: str, source: KeyValue, target: KeyValue) -> list[str]:
    """Describe every difference between two values of the same store type."""
    if data_type == STRING and isinstance(source, StringValue) and isinstance(target, StringValue):
        return compare_strings(source, target)
    if data_type == HASH and isinstance(source, HashValue) and isinstance(target, HashValue):
        return compare_hashes(source, target)
    if data_type == LIST and isinstance(source, ListValue) and isinstance(target, ListValue):
        return compare_lists(source, target)
    if data_type == SET and isinstance(source, SetValue) and isinstance(target, SetValue):
        return compare_sets(source, target)
    if (
        data_type == ZSET
        and isinstance(source, SortedSetValue)
        and isinstance(target, SortedSetValue)
    ):
        return compare_sorted_sets(source, target)
    if data_type not in (STRING, HASH, LIST, SET, ZSET):
        return [f"unsupported data type: {data_type}"]
    return [
        f"value type mismatch: source={type(source).__name__}, target={type(target).__name__}"
    ]


def compare_strings(source: StringValue, target: StringValue) -> list[str]:
    if source.data == target.data:
        return []
    return [
        f"string content mismatch: source length={source.size}, target length={target.size}"
    ]


def compare_hashes(source: HashValue, target: HashValue) -> list[str]:
    mismatches = []
    for name in sorted(source.fields):
        if name not in target.fields:
            mismatches.append(f"field '{name}' missing in target")
        elif source.fields[name] != target.fields[name]:
            mismatches.append(f"field '{name}' value mismatch")
    for name in sorted(target.fields.keys() - source.fields.keys()):
        mismatches.append(f"extra field '{name}' in target")
    return mismatches


def compare_lists(source: ListValue, target: ListValue) -> list[str]:
    mismatches = []
    if len(source.items) != len(target.items):
        mismatches.append(
            f"list length mismatch: source={len(source.items)}, target={len(target.items)}"
        )
    for index, (left, right) in enumerate(zip(source.items, target.items)):
        if left != right:
            mismatches.append(f"element at index {index} mismatch")
    return mismatches


def compare_sets(source: SetValue, target: SetValue) -> list[str]:
    mismatches = [
        f"member '{member}' missing in target" for member in sorted(source.members - target.members)
    ]
    mismatches.extend(
        f"extra member '{member}' in target" for member in sorted(target.members - source.members)
    )
    return mismatches


def compare_sorted_sets(source: SortedSetValue, target: SortedSetValue) -> list[str]:
    source_scores = source.scores()
    target_scores = target.scores()
    mismatches = []
    for member, score in source.members:
        if member not in target_scores:
            mismatches.append(f"member '{member}' missing in target")
        elif target_scores[member] != score:
            mismatches.append(
                f"member '{member}' score mismatch: "
                f"source={score!r}, target={target_scores[member]!r}"
            )
    for member, _ in target.members:
        if member not in source_scores:
            mismatches.append(f"extra member '{member}' in target")
    return mismatches
