"""
Pytest configuration and fixtures for the KV Bridge tests.

Provides an in-memory store client with fault injection, so the
processor, verifier and engine can be exercised without a server.
"""

import io
import logging
import threading
from collections import Counter

import pytest
import structlog
from rich.console import Console

from kv_migration.client.base_client import BaseStoreClient
from kv_migration.client.exceptions import KeyNotFoundError, StoreConnectionError
from kv_migration.config import build_config
from kv_migration.migration.recovery import ConnectionRecovery, RetryConfig
from kv_migration.utils.logging import MigrationLogger
from kv_migration.values import NONE, KeyValue


class FakeStoreClient(BaseStoreClient):
    """Dictionary-backed store.

    Zero-member collections are kept as keys, unlike Redis and Valkey,
    which delete a collection key along with its last member. Failures are
    injected per operation with ``fail``.
    """

    def __init__(self, label: str = "fake", host: str = "localhost", port: int = 6379):
        self.label = label
        self.host = host
        self.port = port
        self.database = 0
        self.data: dict[str, KeyValue] = {}
        self.ttls: dict[str, int] = {}
        self.connected = False
        self.calls: Counter = Counter()
        self._faults: dict[tuple[str, str | None], list[BaseException]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: KeyValue, ttl: int = -1) -> None:
        self.data[key] = value
        if ttl > 0:
            self.ttls[key] = ttl

    def fail(
        self,
        operation: str,
        error: BaseException,
        times: int = 1,
        key: str | None = None,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``.

        With ``key`` set, only calls for that key fail.
        """
        with self._lock:
            self._faults.setdefault((operation, key), []).extend([error] * times)

    def _enter(self, operation: str, key: str | None = None) -> None:
        with self._lock:
            self.calls[operation] += 1
            for fault_key in ((operation, key), (operation, None)):
                queue = self._faults.get(fault_key)
                if queue:
                    raise queue.pop(0)

    def connect(self) -> None:
        self._enter("connect")
        self.connected = True

    def disconnect(self) -> None:
        self._enter("disconnect")
        self.connected = False

    def ping(self) -> None:
        self._enter("ping")

    def get_all_keys(self) -> list[str]:
        self._enter("get_all_keys")
        return sorted(self.data)

    def get_key_type(self, key: str) -> str:
        self._enter("get_key_type", key)
        value = self.data.get(key)
        return value.data_type if value is not None else NONE

    def get_value(self, key: str) -> KeyValue:
        self._enter("get_value", key)
        if key not in self.data:
            raise KeyNotFoundError("key does not exist", key=key)
        return self.data[key]

    def set_value(self, key: str, value: KeyValue) -> None:
        self._enter("set_value", key)
        self.data[key] = value
        self.ttls.pop(key, None)

    def exists(self, key: str) -> bool:
        self._enter("exists", key)
        return key in self.data

    def get_ttl(self, key: str) -> int:
        self._enter("get_ttl", key)
        return self.ttls.get(key, -1)

    def set_ttl(self, key: str, ttl: int) -> None:
        self._enter("set_ttl", key)
        if key not in self.data:
            raise KeyNotFoundError("cannot set ttl: key does not exist", key=key)
        self.ttls[key] = ttl

    def estimate_size(self, key: str, key_type: str) -> int:
        self._enter("estimate_size", key)
        value = self.data.get(key)
        return value.size if value is not None else 0


@pytest.fixture(autouse=True)
def reset_logging():
    """Give every test default structlog settings and untouched root handlers."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def logger() -> MigrationLogger:
    """Migration logger using the default structlog configuration."""
    return MigrationLogger()


@pytest.fixture
def sleep_calls() -> list[float]:
    """Delays requested by ``zero_sleep``."""
    return []


@pytest.fixture
def zero_sleep(sleep_calls):
    """Sleep replacement that records the delay and returns at once."""

    def sleep(seconds: float) -> None:
        sleep_calls.append(seconds)

    return sleep


@pytest.fixture
def recovery(logger, zero_sleep) -> ConnectionRecovery:
    """Recovery with three attempts and millisecond delays."""
    config = RetryConfig(max_attempts=3, initial_delay=0.001, max_delay=0.01)
    return ConnectionRecovery(config, logger, sleep=zero_sleep)


@pytest.fixture
def source() -> FakeStoreClient:
    return FakeStoreClient(label="source", port=6379)


@pytest.fixture
def target() -> FakeStoreClient:
    return FakeStoreClient(label="target", port=6380)


@pytest.fixture
def quiet_console() -> Console:
    """Console writing to a buffer."""
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def migration_config(tmp_path):
    """Configuration for engine tests: no progress bar, resume file in tmp_path."""
    return build_config(
        {
            "engine": {
                "batch_size": 2,
                "max_concurrency": 2,
                "show_progress_bar": False,
                "progress_interval": 0.05,
                "resume_db": str(tmp_path / "resume.db"),
            },
        }
    )


@pytest.fixture
def connection_error() -> StoreConnectionError:
    return StoreConnectionError("read on source: Connection reset by peer")
