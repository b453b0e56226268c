"""Tests for retry with exponential backoff."""

import pytest
from pydantic import ValidationError

from kv_migration.client.exceptions import (
    NonRetryableError,
    RetryExhaustedError,
    StoreConnectionError,
    StoreError,
    TransferError,
    TypeMismatchError,
)
from kv_migration.migration.recovery import ConnectionRecovery, RecoverableClient, RetryConfig
from kv_migration.values import StringValue


class FlakyOperation:
    """Callable that raises the queued errors before succeeding."""

    def __init__(self, *errors: BaseException, result: str = "ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestConnectionRecovery:
    """Test retry bounds, delays and classification."""

    def test_succeeds_on_third_attempt(self, recovery, sleep_calls):
        op = FlakyOperation(
            StoreConnectionError("connection refused"),
            StoreConnectionError("i/o timeout"),
        )

        assert recovery.with_retry("get value", op) == "ok"

        assert op.calls == 3
        assert sleep_calls == pytest.approx([0.001, 0.002])

    def test_delay_is_capped(self, logger, zero_sleep, sleep_calls):
        config = RetryConfig(max_attempts=5, initial_delay=0.004, max_delay=0.01, backoff_factor=2)
        recovery = ConnectionRecovery(config, logger, sleep=zero_sleep)
        op = FlakyOperation(*[StoreConnectionError("network unreachable")] * 4)

        recovery.with_retry("scan", op)

        assert sleep_calls == pytest.approx([0.004, 0.008, 0.01, 0.01])

    def test_gives_up_after_max_attempts(self, recovery):
        op = FlakyOperation(*[StoreConnectionError("connection reset by peer")] * 5)

        with pytest.raises(RetryExhaustedError) as exc_info:
            recovery.with_retry("set value", op)

        assert op.calls == 3
        assert exc_info.value.attempts == 3
        assert "operation set value failed after 3 attempts" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, StoreConnectionError)

    def test_non_retryable_error_runs_once(self, recovery, sleep_calls):
        op = FlakyOperation(StoreError("WRONGTYPE Operation against a key"))

        with pytest.raises(NonRetryableError, match="non-retryable error in get value"):
            recovery.with_retry("get value", op)

        assert op.calls == 1
        assert sleep_calls == []

    def test_type_mismatch_is_never_retried(self, recovery):
        op = FlakyOperation(TypeMismatchError("expected hash value for key timeout:1, got ListValue"))

        with pytest.raises(NonRetryableError):
            recovery.with_retry("process key", op)

        assert op.calls == 1

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Connection refused", True),
            ("Timeout reading from socket", True),
            ("BROKEN PIPE", True),
            ("WRONGTYPE Operation against a key", False),
            ("Connection closed by server", False),
            ("", False),
        ],
    )
    def test_is_retryable_error_is_case_insensitive(self, recovery, message, expected):
        assert recovery.is_retryable_error(StoreError(message)) is expected

    def test_classifies_by_root_cause(self, recovery):
        try:
            try:
                raise StoreError("NOSCRIPT No matching script")
            except StoreError as inner:
                raise TransferError("failed to get hash value for key network:7") from inner
        except TransferError as outer:
            assert recovery.is_retryable_error(outer) is False

    def test_custom_retryable_errors(self, logger, zero_sleep):
        config = RetryConfig(max_attempts=2, initial_delay=0, retryable_errors=["LOADING"])
        recovery = ConnectionRecovery(config, logger, sleep=zero_sleep)
        op = FlakyOperation(StoreError("loading dataset in memory"))

        assert recovery.with_retry("ping", op) == "ok"
        assert op.calls == 2


class TestRetryConfig:
    """Test retry configuration validation."""

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.backoff_factor == 2.0
        assert "connection refused" in config.retryable_errors

    def test_from_attempts_counts_first_try(self):
        assert RetryConfig.from_attempts(3).max_attempts == 4
        assert RetryConfig.from_attempts(0).max_attempts == 1

    @pytest.mark.parametrize("overrides", [{"max_attempts": 0}, {"backoff_factor": 1.0}])
    def test_rejects_invalid(self, overrides):
        with pytest.raises(ValidationError):
            RetryConfig(**overrides)


class TestRecoverableClient:
    """Test the retrying client wrapper."""

    def test_retries_transient_store_errors(self, source, recovery, logger):
        source.put("k", StringValue("v"))
        source.fail("get_value", StoreConnectionError("connection lost"), times=2)
        client = RecoverableClient(source, recovery, logger, label="Redis")

        assert client.get_value("k") == StringValue("v")
        assert source.calls["get_value"] == 3

    def test_copies_identity_from_wrapped_client(self, source, recovery, logger):
        client = RecoverableClient(source, recovery, logger)
        assert client.label == "source"
        assert (client.host, client.port) == ("localhost", 6379)

    def test_connect_failure_is_reported(self, source, recovery, logger):
        source.fail("connect", StoreConnectionError("connection refused"), times=3)
        client = RecoverableClient(source, recovery, logger)

        with pytest.raises(RetryExhaustedError):
            client.connect()

        assert source.calls["connect"] == 3
        assert not source.connected

    def test_disconnect_is_not_retried(self, source, recovery, logger):
        source.fail("disconnect", StoreConnectionError("connection reset"))
        client = RecoverableClient(source, recovery, logger)

        with pytest.raises(StoreConnectionError):
            client.disconnect()

        assert source.calls["disconnect"] == 1
