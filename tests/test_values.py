"""Tests for the typed key values."""

import pytest

from kv_migration.client.exceptions import UnsupportedTypeError
from kv_migration.values import (
    HashValue,
    ListValue,
    SetValue,
    SortedSetValue,
    StringValue,
    empty_value,
    value_for_type,
)


class TestValueVariants:
    """Test size and type tags of each variant."""

    def test_string_size_is_byte_length(self):
        assert StringValue("héllo").size == 6

    def test_collection_sizes_are_element_counts(self):
        assert HashValue({"a": "1", "b": "2"}).size == 2
        assert ListValue(["x", "x", "y"]).size == 3
        assert SetValue({"a", "b"}).size == 2
        assert SortedSetValue([("a", 1.0)]).size == 1

    def test_set_members_become_frozenset(self):
        value = SetValue({"a", "b"})
        assert isinstance(value.members, frozenset)

    def test_sorted_set_rejects_duplicate_members(self):
        with pytest.raises(ValueError, match="duplicate"):
            SortedSetValue([("a", 1.0), ("a", 2.0)])

    def test_sorted_set_scores(self):
        value = SortedSetValue([("a", 1.0), ("b", 2.5)])
        assert value.scores() == {"a": 1.0, "b": 2.5}

    def test_is_empty(self):
        assert HashValue().is_empty
        assert not ListValue(["a"]).is_empty


class TestValueForType:
    """Test building variants from decoded payloads."""

    @pytest.mark.parametrize(
        "data_type,raw,expected",
        [
            ("string", "v", StringValue("v")),
            ("hash", {"f": "v"}, HashValue({"f": "v"})),
            ("list", ["a", "b"], ListValue(["a", "b"])),
            ("set", {"a"}, SetValue(frozenset({"a"}))),
            ("zset", [("a", 1)], SortedSetValue([("a", 1.0)])),
        ],
    )
    def test_builds_matching_variant(self, data_type, raw, expected):
        value = value_for_type(data_type, raw)
        assert value == expected
        assert value.data_type == data_type

    def test_unknown_type_is_rejected(self):
        with pytest.raises(UnsupportedTypeError, match="unsupported key type: stream"):
            value_for_type("stream", [])

    def test_empty_value(self):
        assert empty_value("list") == ListValue()
        with pytest.raises(UnsupportedTypeError):
            empty_value("none")
