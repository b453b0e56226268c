"""Redis protocol store client.

Valkey speaks the same protocol, so one client class serves both the
Redis source and the Valkey target. Each call runs under the socket
timeout chosen by the shared ``TimeoutPolicy``.
"""

import threading
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import Any

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from kv_migration.client.base_client import BaseStoreClient
from kv_migration.client.exceptions import KeyNotFoundError, StoreConnectionError, StoreError
from kv_migration.client.timeouts import TimeoutPolicy
from kv_migration.config import DatabaseConfig
from kv_migration.utils.logging import get_logger
from kv_migration.values import (
    HASH,
    LIST,
    NONE,
    SET,
    STRING,
    ZSET,
    HashValue,
    KeyValue,
    ListValue,
    SetValue,
    SortedSetValue,
    StringValue,
    value_for_type,
)

logger = get_logger(__name__)

# Placeholder member written and removed again for an empty collection.
# Redis and Valkey delete a collection key once its last member goes, so
# the target ends up without the key, as the source has it.
EMPTY_PLACEHOLDER = "__kv_bridge_empty__"

# Members sent per command when writing large collections
WRITE_CHUNK_SIZE = 1000


def _chunks(items: list[Any], size: int = WRITE_CHUNK_SIZE) -> Iterable[list[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class RedisStoreClient(BaseStoreClient):
    """Store client backed by redis-py.

    A ``redis.Redis`` instance is kept per distinct socket timeout, so a
    large hash can be read with the extended timeout without slowing
    failure detection for small keys.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        timeout_policy: TimeoutPolicy | None = None,
        label: str = "redis",
    ):
        """Initialize store client.

        Args:
            config: Connection parameters
            timeout_policy: Per-operation timeout policy
            label: Name used in log entries ("redis", "valkey")
        """
        self.config = config
        self.timeouts = timeout_policy or TimeoutPolicy()
        self.label = label
        self.host = config.host
        self.port = config.port
        self.database = config.database

        self._clients: dict[float, redis.Redis] = {}
        self._lock = threading.Lock()
        self._connected = False

    def _options(self, timeout: float) -> dict[str, Any]:
        return {
            "host": self.config.host,
            "port": self.config.port,
            "db": self.config.database,
            "password": self.config.password or None,
            "socket_timeout": timeout,
            "socket_connect_timeout": self.config.connection_timeout,
            "decode_responses": True,
            "encoding_errors": "surrogateescape",
        }

    def _client(self, data_type: str | None = None, size: int = 0) -> redis.Redis:
        if not self._connected:
            raise StoreConnectionError(f"{self.label} client is not connected: connection closed")

        if data_type is None:
            timeout = self.config.operation_timeout
        else:
            timeout = self.timeouts.operation_timeout(data_type, size)

        with self._lock:
            client = self._clients.get(timeout)
            if client is None:
                client = redis.Redis(**self._options(timeout))
                self._clients[timeout] = client
            return client

    @contextmanager
    def _translate_errors(self, operation: str, key: str | None = None) -> Generator[None, None, None]:
        """Map redis-py exceptions onto store exceptions."""
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(f"{operation} on {self.label}: {e}", key=key) from e
        except RedisError as e:
            raise StoreError(f"{operation} on {self.label}: {e}", key=key) from e

    def connect(self) -> None:
        with self._lock:
            self._connected = True
        try:
            self.ping()
        except StoreError:
            self.disconnect()
            raise

        logger.info(
            "store_connected",
            store=self.label,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def disconnect(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
            self._connected = False

        for client in clients:
            with self._translate_errors("disconnect"):
                client.close()

        logger.debug("store_disconnected", store=self.label)

    def ping(self) -> None:
        with self._translate_errors("ping"):
            self._client().ping()

    def get_all_keys(self) -> list[str]:
        with self._translate_errors("scan"):
            return list(self._client().scan_iter(count=1000))

    def get_key_type(self, key: str) -> str:
        with self._translate_errors("type", key):
            return self._client().type(key)

    def estimate_size(self, key: str, key_type: str) -> int:
        commands = {
            STRING: "strlen",
            HASH: "hlen",
            LIST: "llen",
            SET: "scard",
            ZSET: "zcard",
        }
        command = commands.get(key_type)
        if command is None:
            return 0
        with self._translate_errors(command, key):
            return int(getattr(self._client(), command)(key))

    def get_value(self, key: str) -> KeyValue:
        key_type = self.get_key_type(key)
        if key_type == NONE:
            raise KeyNotFoundError("key does not exist", key=key)

        size = self.estimate_size(key, key_type)
        client = self._client(key_type, size)

        with self._translate_errors("read", key):
            if key_type == STRING:
                raw: Any = client.get(key)
                if raw is None:
                    raise KeyNotFoundError("key does not exist", key=key)
            elif key_type == HASH:
                raw = client.hgetall(key)
            elif key_type == LIST:
                raw = client.lrange(key, 0, -1)
            elif key_type == SET:
                raw = client.smembers(key)
            elif key_type == ZSET:
                raw = client.zrange(key, 0, -1, withscores=True)
            else:
                raw = None

        return value_for_type(key_type, raw)

    def set_value(self, key: str, value: KeyValue) -> None:
        client = self._client(value.data_type, value.size)

        with self._translate_errors("write", key):
            if isinstance(value, StringValue):
                client.set(key, value.data)
                return

            pipe = client.pipeline(transaction=True)
            pipe.delete(key)

            if isinstance(value, HashValue):
                if value.fields:
                    pipe.hset(key, mapping=value.fields)
                else:
                    pipe.hset(key, EMPTY_PLACEHOLDER, "")
                    pipe.hdel(key, EMPTY_PLACEHOLDER)
            elif isinstance(value, ListValue):
                if value.items:
                    for chunk in _chunks(value.items):
                        pipe.rpush(key, *chunk)
                else:
                    pipe.rpush(key, EMPTY_PLACEHOLDER)
                    pipe.lpop(key)
            elif isinstance(value, SetValue):
                if value.members:
                    for chunk in _chunks(sorted(value.members)):
                        pipe.sadd(key, *chunk)
                else:
                    pipe.sadd(key, EMPTY_PLACEHOLDER)
                    pipe.srem(key, EMPTY_PLACEHOLDER)
            elif isinstance(value, SortedSetValue):
                if value.members:
                    for chunk in _chunks(value.members):
                        pipe.zadd(key, dict(chunk))
                else:
                    pipe.zadd(key, {EMPTY_PLACEHOLDER: 0})
                    pipe.zrem(key, EMPTY_PLACEHOLDER)
            else:
                raise StoreError(f"cannot write value of type {type(value).__name__}", key=key)

            pipe.execute()

    def exists(self, key: str) -> bool:
        with self._translate_errors("exists", key):
            return bool(self._client().exists(key))

    def get_ttl(self, key: str) -> int:
        with self._translate_errors("ttl", key):
            ttl = int(self._client().ttl(key))
        return ttl if ttl > 0 else -1

    def set_ttl(self, key: str, ttl: int) -> None:
        with self._translate_errors("expire", key):
            applied = self._client().expire(key, ttl)
        if not applied:
            raise KeyNotFoundError("cannot set ttl: key does not exist", key=key)
