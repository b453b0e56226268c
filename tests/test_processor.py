"""Tests for per-type key transfer."""

import pytest
from structlog.testing import capture_logs

from kv_migration.client.exceptions import (
    StoreError,
    TransferError,
    TypeMismatchError,
    UnsupportedTypeError,
)
from kv_migration.client.timeouts import TimeoutPolicy
from kv_migration.config import TimeoutConfig
from kv_migration.migration.processor import DataTypeProcessor, estimate_data_size
from kv_migration.migration.verifier import DataVerifier
from kv_migration.utils.logging import MigrationLogger
from kv_migration.values import (
    HashValue,
    ListValue,
    SetValue,
    SortedSetValue,
    StringValue,
)

SAMPLE_VALUES = [
    ("s1", StringValue("hello world")),
    ("h1", HashValue({"a": "1", "b": "2"})),
    ("l1", ListValue(["x", "y", "x"])),
    ("set1", SetValue({"m1", "m2"})),
    ("z1", SortedSetValue([("a", 1.0), ("b", 2.5)])),
]

EMPTY_VALUES = [
    ("h-empty", HashValue()),
    ("l-empty", ListValue()),
    ("s-empty", SetValue()),
    ("z-empty", SortedSetValue()),
]


@pytest.fixture
def processor(logger) -> DataTypeProcessor:
    return DataTypeProcessor(logger, TimeoutPolicy())


class TestProcessKey:
    """Test copying keys of every type."""

    @pytest.mark.parametrize("key,value", SAMPLE_VALUES)
    def test_round_trip_verifies(self, processor, logger, source, target, key, value):
        source.put(key, value)

        outcome = processor.process_key(key, value.data_type, source, target)

        assert outcome.success
        assert outcome.size == value.size
        assert target.data[key] == value

        result = DataVerifier(logger).verify_key(key, source, target)
        assert result.success
        assert result.mismatches == []

    @pytest.mark.parametrize("key,value", EMPTY_VALUES)
    def test_empty_collection_is_materialized(self, processor, source, target, key, value):
        source.put(key, value)

        outcome = processor.process_key(key, value.data_type, source, target)

        assert outcome.success
        assert target.exists(key)
        assert target.get_key_type(key) == value.data_type
        assert target.get_value(key).size == 0

    def test_hash_with_ttl_then_field_deleted_in_target(self, processor, logger, source, target):
        source.put("h1", HashValue({"a": "1", "b": "2"}), ttl=120)

        processor.process_hash("h1", source, target)

        assert target.data["h1"] == HashValue({"a": "1", "b": "2"})
        assert 0 < target.get_ttl("h1") <= 120

        target.data["h1"] = HashValue({"a": "1"})
        result = DataVerifier(logger).verify_key("h1", source, target)

        assert not result.success
        assert any("'b'" in m and "missing in target" in m for m in result.mismatches)

    def test_unsupported_type(self, processor, source, target):
        with pytest.raises(UnsupportedTypeError, match="unsupported key type: stream"):
            processor.process_key("k", "stream", source, target)

    def test_type_mismatch_is_not_written(self, processor, source, target):
        source.put("k", ListValue(["a"]))

        with pytest.raises(TypeMismatchError, match="expected hash value for key k, got ListValue"):
            processor.process_key("k", "hash", source, target)

        assert "k" not in target.data
        assert source.calls["get_value"] == 1

    def test_sorted_set_label_in_errors(self, processor, source, target):
        source.put("z", StringValue("v"))
        with pytest.raises(TypeMismatchError, match="expected sorted set value"):
            processor.process_sorted_set("z", source, target)

    def test_read_failure_raises_transfer_error(self, processor, source, target):
        source.put("k", StringValue("v"))
        source.fail("get_value", StoreError("boom"))

        with pytest.raises(TransferError, match="failed to get string value for key k: boom"):
            processor.process_string("k", source, target)

    def test_write_failure_raises_transfer_error(self, processor, source, target):
        source.put("k", SetValue({"a"}))
        target.fail("set_value", StoreError("READONLY"))

        with pytest.raises(TransferError, match="failed to set set value for key k"):
            processor.process_set("k", source, target)

    def test_ttl_read_failure_is_not_fatal(self, processor, source, target):
        source.put("k", StringValue("v"), ttl=60)
        source.fail("get_ttl", StoreError("ttl unavailable"))

        outcome = processor.process_string("k", source, target)

        assert outcome.success
        assert target.get_ttl("k") == -1

    def test_ttl_write_failure_is_a_warning(self, processor, source, target):
        source.put("k", StringValue("v"), ttl=60)
        target.fail("set_ttl", StoreError("expire rejected"))

        with capture_logs() as logs:
            outcome = processor.process_string("k", source, target)

        assert outcome.success
        assert target.data["k"] == StringValue("v")
        warnings = [e for e in logs if e["event"] == "ttl_write_failed"]
        assert warnings and warnings[0]["log_level"] == "warning"

    def test_no_ttl_is_not_propagated(self, processor, source, target):
        source.put("k", StringValue("v"))
        processor.process_string("k", source, target)
        assert target.calls["set_ttl"] == 0

    def test_large_data_is_signalled(self, source, target):
        policy = TimeoutPolicy(TimeoutConfig(large_data_threshold=2))
        processor = DataTypeProcessor(MigrationLogger(), policy)
        source.put("big", ListValue(["a", "b", "c"]))

        with capture_logs() as logs:
            processor.process_list("big", source, target)

        notices = [e for e in logs if e["event"] == "large_data_detected"]
        assert len(notices) == 1
        assert notices[0]["size"] == 3

    def test_transfer_is_logged(self, processor, source, target):
        source.put("k", StringValue("abc"))

        with capture_logs() as logs:
            processor.process_string("k", source, target)

        completed = [e for e in logs if e["event"] == "key_transfer_completed"]
        assert completed[0]["key"] == "k"
        assert completed[0]["size"] == 3


class TestEstimateDataSize:
    """Test size estimation helper."""

    def test_reports_store_size(self, source):
        source.put("h", HashValue({"a": "1", "b": "2"}))
        assert estimate_data_size(source, "h", "hash") == 2

    def test_failure_returns_zero(self, source):
        source.fail("estimate_size", StoreError("boom"))
        assert estimate_data_size(source, "h", "hash") == 0
