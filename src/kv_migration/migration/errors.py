"""Error classification for migration operations.

Errors raised while moving keys are sorted into broad categories by
matching their messages against known phrases. Errors that match no
category are critical. Whether an error is worth retrying is decided
separately, by ``RETRYABLE_ERRORS``, which the retry layer also uses.
"""

from collections.abc import Iterable
from enum import Enum
from typing import Any

from kv_migration.client.exceptions import KVMigrationError

# Message fragments that mark an error as transient
RETRYABLE_ERRORS: tuple[str, ...] = (
    "connection refused",
    "connection reset",
    "timeout",
    "network",
    "i/o timeout",
    "broken pipe",
    "connection lost",
)


class ErrorType(Enum):
    """Broad error categories."""

    CONNECTION = "ConnectionError"
    NETWORK = "NetworkError"
    AUTHENTICATION = "AuthenticationError"
    DATA = "DataError"
    CONFIGURATION = "ConfigurationError"
    CRITICAL = "CriticalError"

    def __str__(self) -> str:
        return self.value


# Checked in this order; the first category with a matching phrase wins
ERROR_PATTERNS: list[tuple[ErrorType, tuple[str, ...]]] = [
    (
        ErrorType.CONNECTION,
        (
            "connection refused",
            "connection reset",
            "connection lost",
            "connection closed",
            "no connection",
            "dial tcp",
            "connect:",
        ),
    ),
    (
        ErrorType.NETWORK,
        (
            "timeout",
            "network",
            "i/o timeout",
            "broken pipe",
            "host unreachable",
            "no route to host",
        ),
    ),
    (
        ErrorType.AUTHENTICATION,
        (
            "auth",
            "unauthorized",
            "invalid password",
            "access denied",
            "permission denied",
        ),
    ),
    (
        ErrorType.CONFIGURATION,
        (
            "invalid configuration",
            "config",
            "invalid host",
            "invalid port",
            "invalid database",
        ),
    ),
    (
        ErrorType.DATA,
        (
            "invalid data",
            "corrupt",
            "parse error",
            "invalid format",
            "unsupported type",
            "unsupported key type",
            "serialization",
            "expected",
        ),
    ),
]


def classify_error(err: BaseException | None) -> ErrorType:
    """Classify an error by its message.

    Args:
        err: Error to classify

    Returns:
        Matching category, CRITICAL for anything unrecognised
    """
    if err is None:
        return ErrorType.CRITICAL

    message = str(err).lower()
    for error_type, patterns in ERROR_PATTERNS:
        if any(pattern in message for pattern in patterns):
            return error_type
    return ErrorType.CRITICAL


class MigrationError(KVMigrationError):
    """Structured migration error with operation, key and cause context.

    The ``with_*`` methods set a field and return the same instance so
    context can be added in a chain while the error propagates.
    """

    def __init__(
        self,
        error_type: ErrorType,
        operation: str,
        message: str,
        key: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, str] | None = None,
        retryable: bool | None = None,
    ):
        self.error_type = error_type
        self.operation = operation
        self.message = message
        self.key = key
        self.cause = cause
        self.metadata: dict[str, str] = dict(metadata or {})
        if retryable is None:
            retryable = is_retryable(cause) if cause is not None else has_retryable_phrase(message)
        self.retryable = retryable
        super().__init__(message)

    def __str__(self) -> str:
        if self.key:
            return f"{self.error_type} in {self.operation} for key '{self.key}': {self.message}"
        return f"{self.error_type} in {self.operation}: {self.message}"

    def with_key(self, key: str) -> "MigrationError":
        self.key = key
        return self

    def with_cause(self, cause: BaseException) -> "MigrationError":
        self.cause = cause
        self.__cause__ = cause
        return self

    def with_metadata(self, key: str, value: Any) -> "MigrationError":
        self.metadata[key] = str(value)
        return self

    def with_retryable(self, retryable: bool) -> "MigrationError":
        self.retryable = retryable
        return self


def wrap_error(err: BaseException, operation: str) -> MigrationError:
    """Wrap an error as a MigrationError.

    An existing MigrationError is returned unchanged.
    """
    if isinstance(err, MigrationError):
        return err
    return MigrationError(
        classify_error(err), operation, str(err), retryable=is_retryable(err)
    ).with_cause(err)


def has_retryable_phrase(message: str, patterns: Iterable[str] = RETRYABLE_ERRORS) -> bool:
    message = message.lower()
    return any(pattern.lower() in message for pattern in patterns)


def is_retryable(err: BaseException | None, patterns: Iterable[str] = RETRYABLE_ERRORS) -> bool:
    """Whether an error is worth retrying.

    A MigrationError answers with its own ``retryable`` flag; any other
    error is retryable when its message contains one of ``patterns``.
    """
    if err is None:
        return False
    if isinstance(err, MigrationError):
        return err.retryable
    return has_retryable_phrase(str(err), patterns)


def is_critical(err: BaseException | None) -> bool:
    """Whether an error matches no known category."""
    if err is None:
        return False
    if isinstance(err, MigrationError):
        return err.error_type is ErrorType.CRITICAL
    return classify_error(err) is ErrorType.CRITICAL


class ErrorAggregator(KVMigrationError):
    """Collects errors from many keys into one reportable error."""

    def __init__(self) -> None:
        super().__init__()
        self._errors: list[BaseException] = []

    def add(self, err: BaseException | None) -> None:
        if err is not None:
            self._errors.append(err)

    def has_errors(self) -> bool:
        return bool(self._errors)

    def count(self) -> int:
        return len(self._errors)

    @property
    def errors(self) -> list[BaseException]:
        return list(self._errors)

    def has_critical_errors(self) -> bool:
        return any(is_critical(err) for err in self._errors)

    def get_critical_errors(self) -> list[BaseException]:
        return [err for err in self._errors if is_critical(err)]

    def clear(self) -> None:
        self._errors.clear()

    def __str__(self) -> str:
        if not self._errors:
            return ""
        if len(self._errors) == 1:
            return str(self._errors[0])

        lines = [f"{i}: {err}" for i, err in enumerate(self._errors, start=1)]
        return "multiple errors occurred:\n" + "\n".join(lines)
