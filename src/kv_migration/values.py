"""Typed values for the five store data types.

Every key holds exactly one of these variants. The class-level ``data_type``
tag matches the name the store reports from ``TYPE``, so a value can be
checked against a declared key type without inspecting its payload.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar

from kv_migration.client.exceptions import UnsupportedTypeError

STRING = "string"
HASH = "hash"
LIST = "list"
SET = "set"
ZSET = "zset"
NONE = "none"


@dataclass(frozen=True)
class KeyValue:
    """Base class for a typed key value."""

    data_type: ClassVar[str] = ""

    @property
    def size(self) -> int:
        """Byte length for strings, element count for collections."""
        raise NotImplementedError

    @property
    def is_empty(self) -> bool:
        return self.size == 0


@dataclass(frozen=True)
class StringValue(KeyValue):
    data_type: ClassVar[str] = STRING

    data: str = ""

    @property
    def size(self) -> int:
        return len(self.data.encode("utf-8", "surrogateescape"))


@dataclass(frozen=True)
class HashValue(KeyValue):
    data_type: ClassVar[str] = HASH

    fields: dict[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.fields)


@dataclass(frozen=True)
class ListValue(KeyValue):
    data_type: ClassVar[str] = LIST

    items: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class SetValue(KeyValue):
    data_type: ClassVar[str] = SET

    members: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not isinstance(self.members, frozenset):
            object.__setattr__(self, "members", frozenset(self.members))

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class SortedSetValue(KeyValue):
    """Sorted set as ``(member, score)`` pairs in ascending score order."""

    data_type: ClassVar[str] = ZSET

    members: list[tuple[str, float]] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for member, _ in self.members:
            if member in seen:
                raise ValueError(f"duplicate sorted set member '{member}'")
            seen.add(member)

    @property
    def size(self) -> int:
        return len(self.members)

    def scores(self) -> dict[str, float]:
        """Member to score mapping."""
        return {member: score for member, score in self.members}


VALUE_TYPES: dict[str, type[KeyValue]] = {
    STRING: StringValue,
    HASH: HashValue,
    LIST: ListValue,
    SET: SetValue,
    ZSET: SortedSetValue,
}


def value_for_type(data_type: str, raw: Any) -> KeyValue:
    """Build the variant for a store type from a decoded payload.

    Args:
        data_type: Type name as reported by the store
        raw: Decoded payload (str, dict, list, set or list of pairs)

    Returns:
        The matching KeyValue variant

    Raises:
        UnsupportedTypeError: If data_type is not a supported store type
    """
    if data_type == STRING:
        return StringValue(raw)
    if data_type == HASH:
        return HashValue(dict(raw))
    if data_type == LIST:
        return ListValue(list(raw))
    if data_type == SET:
        return SetValue(frozenset(raw))
    if data_type == ZSET:
        return SortedSetValue([(member, float(score)) for member, score in raw])
    raise UnsupportedTypeError(f"unsupported key type: {data_type}", data_type=data_type)


def empty_value(data_type: str) -> KeyValue:
    """Return a zero-member value of the given type."""
    try:
        return VALUE_TYPES[data_type]()
    except KeyError as e:
        raise UnsupportedTypeError(f"unsupported key type: {data_type}", data_type=data_type) from e
