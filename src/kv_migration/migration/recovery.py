"""Retry with exponential backoff for store operations.

``ConnectionRecovery`` reruns an operation while it keeps failing with a
transient error, sleeping ``min(initial_delay * backoff_factor**(n-1),
max_delay)`` before retry ``n``. An error counts as transient when its
message contains one of the configured phrases. ``RecoverableClient``
applies this to every call of a store client.
"""

import time
import traceback
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from kv_migration.client.base_client import BaseStoreClient
from kv_migration.client.exceptions import (
    NonRetryableError,
    RetryExhaustedError,
    TypeMismatchError,
    UnsupportedTypeError,
)
from kv_migration.migration.errors import RETRYABLE_ERRORS, is_retryable
from kv_migration.utils.logging import MigrationLogger
from kv_migration.values import KeyValue

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS = list(RETRYABLE_ERRORS)

# Errors that describe the data itself; retrying cannot change the outcome
NEVER_RETRY = (TypeMismatchError, UnsupportedTypeError)


class RetryConfig(BaseModel):
    """Retry behaviour for store operations."""

    max_attempts: int = Field(default=3, ge=1, description="Total invocations allowed")
    initial_delay: float = Field(default=1.0, ge=0, description="Delay before the first retry (s)")
    max_delay: float = Field(default=30.0, ge=0, description="Upper bound for any delay (s)")
    backoff_factor: float = Field(default=2.0, gt=1.0, description="Delay growth per retry")
    retryable_errors: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RETRYABLE_ERRORS),
        description="Case-insensitive message fragments marking an error transient",
    )

    @classmethod
    def from_attempts(cls, retry_attempts: int) -> "RetryConfig":
        """Config allowing ``retry_attempts`` retries after the first try."""
        return cls(max_attempts=retry_attempts + 1)


def _root_cause(err: BaseException) -> BaseException:
    seen = {id(err)}
    while err.__cause__ is not None and id(err.__cause__) not in seen:
        err = err.__cause__
        seen.add(id(err))
    return err


class ConnectionRecovery:
    """Runs operations with retry on transient connection errors.

    Holds only its read-only ``RetryConfig``, so a single instance can serve
    any number of worker threads.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        logger: MigrationLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize recovery handler.

        Args:
            config: Retry configuration
            logger: Migration logger
            sleep: Function used to wait between attempts
        """
        self.config = config or RetryConfig()
        self.logger = logger or MigrationLogger()
        self._sleep = sleep
        self._patterns = list(self.config.retryable_errors)

    def is_retryable_error(self, err: BaseException) -> bool:
        """Whether an error matches one of the retryable phrases.

        Wrapped errors are judged by their innermost cause, so key names
        embedded in wrapper messages cannot trigger a retry.
        """
        if isinstance(err, NEVER_RETRY):
            return False
        return is_retryable(_root_cause(err), self._patterns)

    def with_retry(self, operation: str, fn: Callable[[], T]) -> T:
        """Run ``fn`` until it succeeds, fails permanently, or attempts run out.

        Args:
            operation: Operation name for logs and error messages
            fn: Zero-argument callable to run

        Returns:
            Whatever ``fn`` returns

        Raises:
            NonRetryableError: ``fn`` raised an error that is not transient
            RetryExhaustedError: every attempt failed with a transient error
        """
        attempts = 0

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            self.logger.log_error(operation, "", str(exc), "", retry_state.attempt_number)
            self.logger.warning(
                "operation_retrying",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=self.config.max_attempts,
                delay_seconds=delay,
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.initial_delay,
                exp_base=self.config.backoff_factor,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception(self.is_retryable_error),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=False,
        )

        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return fn()
        except RetryError as e:
            last = e.last_attempt.exception()
            self.logger.log_error(
                operation, "", str(last), _format_trace(last), e.last_attempt.attempt_number
            )
            raise RetryExhaustedError(
                f"operation {operation} failed after {e.last_attempt.attempt_number} attempts: {last}",
                operation=operation,
                attempts=e.last_attempt.attempt_number,
            ) from last
        except Exception as e:
            self.logger.log_error(operation, "", str(e), "", attempts)
            raise NonRetryableError(
                f"non-retryable error in {operation}: {e}",
                operation=operation,
                attempts=attempts,
            ) from e

        raise RuntimeError("Unexpected retry loop exit")


def _format_trace(err: BaseException | None) -> str:
    if err is None or err.__traceback__ is None:
        return ""
    return "".join(traceback.format_exception(type(err), err, err.__traceback__))


class RecoverableClient(BaseStoreClient):
    """Store client wrapper that retries every call through ConnectionRecovery."""

    def __init__(
        self,
        client: BaseStoreClient,
        recovery: ConnectionRecovery,
        logger: MigrationLogger,
        label: str | None = None,
    ):
        self.client = client
        self.recovery = recovery
        self.logger = logger
        self.label = label or client.label
        self.host = client.host
        self.port = client.port
        self.database = client.database

    def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        return self.recovery.with_retry(f"{operation} ({self.label})", lambda: fn(*args))

    def connect(self) -> None:
        start = time.perf_counter()
        try:
            self._call("connect", self.client.connect)
        except Exception:
            self.logger.log_connection(
                "connect", self.host, self.port, self.database, False, time.perf_counter() - start
            )
            raise
        self.logger.log_connection(
            "connect", self.host, self.port, self.database, True, time.perf_counter() - start
        )

    def disconnect(self) -> None:
        start = time.perf_counter()
        try:
            self.client.disconnect()
        except Exception:
            self.logger.log_connection(
                "disconnect", self.host, self.port, self.database, False, time.perf_counter() - start
            )
            raise
        self.logger.log_connection(
            "disconnect", self.host, self.port, self.database, True, time.perf_counter() - start
        )

    def ping(self) -> None:
        self._call("ping", self.client.ping)

    def get_all_keys(self) -> list[str]:
        return self._call("get all keys", self.client.get_all_keys)

    def get_key_type(self, key: str) -> str:
        return self._call("get key type", self.client.get_key_type, key)

    def get_value(self, key: str) -> KeyValue:
        return self._call("get value", self.client.get_value, key)

    def set_value(self, key: str, value: KeyValue) -> None:
        self._call("set value", self.client.set_value, key, value)

    def exists(self, key: str) -> bool:
        return self._call("exists", self.client.exists, key)

    def get_ttl(self, key: str) -> int:
        return self._call("get ttl", self.client.get_ttl, key)

    def set_ttl(self, key: str, ttl: int) -> None:
        self._call("set ttl", self.client.set_ttl, key, ttl)

    def estimate_size(self, key: str, key_type: str) -> int:
        return self._call("estimate size", self.client.estimate_size, key, key_type)
