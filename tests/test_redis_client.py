"""Tests for the redis-py backed store client, without a server."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from kv_migration.client.exceptions import KeyNotFoundError, StoreConnectionError, StoreError
from kv_migration.client.redis_client import EMPTY_PLACEHOLDER, RedisStoreClient
from kv_migration.client.timeouts import TimeoutPolicy
from kv_migration.config import DatabaseConfig, TimeoutConfig
from kv_migration.values import HashValue, ListValue, SetValue, SortedSetValue, StringValue


class RecordingPipeline:
    def __init__(self, server: "RecordingRedis"):
        self.server = server
        self.commands: list[tuple] = []

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self

        return record

    def execute(self):
        self.server.pipelines.append(self.commands)
        return []


class RecordingRedis:
    """Stands in for ``redis.Redis``; shares one keyspace across instances."""

    instances: list["RecordingRedis"] = []
    keyspace: dict = {}
    ping_error: Exception | None = None

    def __init__(self, **options):
        self.options = options
        self.pipelines: list[list[tuple]] = []
        self.closed = False
        RecordingRedis.instances.append(self)

    def ping(self):
        if RecordingRedis.ping_error is not None:
            raise RecordingRedis.ping_error
        return True

    def close(self):
        self.closed = True

    def type(self, key):
        value = self.keyspace.get(key)
        return value.data_type if value is not None else "none"

    def hlen(self, key):
        return len(self.keyspace[key].fields)

    def hgetall(self, key):
        return dict(self.keyspace[key].fields)

    def zcard(self, key):
        return len(self.keyspace[key].members)

    def zrange(self, key, start, end, withscores=False):
        return list(self.keyspace[key].members)

    def scan_iter(self, count=None):
        return iter(sorted(self.keyspace))

    def exists(self, key):
        return int(key in self.keyspace)

    def ttl(self, key):
        return -2 if key not in self.keyspace else -1

    def expire(self, key, ttl):
        return key in self.keyspace

    def set(self, key, value):
        raise ResponseError("READONLY You can't write against a read only replica.")

    def pipeline(self, transaction=True):
        return RecordingPipeline(self)


@pytest.fixture
def fake_redis(monkeypatch):
    RecordingRedis.instances = []
    RecordingRedis.keyspace = {}
    RecordingRedis.ping_error = None
    monkeypatch.setattr("kv_migration.client.redis_client.redis.Redis", RecordingRedis)
    return RecordingRedis


@pytest.fixture
def client(fake_redis):
    config = DatabaseConfig(
        host="valkey.test", port=6380, password="pw", database=2, operation_timeout=7.0
    )
    policy = TimeoutPolicy(TimeoutConfig(large_data_threshold=2, large_data_multiplier=3.0))
    store = RedisStoreClient(config, timeout_policy=policy, label="valkey")
    store.connect()
    yield store
    store.disconnect()


class TestRedisStoreClient:
    """Test command mapping and error translation."""

    def test_calls_require_connection(self, fake_redis):
        store = RedisStoreClient(DatabaseConfig())
        with pytest.raises(StoreConnectionError, match="not connected"):
            store.ping()

    def test_connection_options(self, client, fake_redis):
        options = fake_redis.instances[0].options
        assert options["host"] == "valkey.test"
        assert options["port"] == 6380
        assert options["db"] == 2
        assert options["password"] == "pw"
        assert options["socket_timeout"] == 7.0
        assert options["socket_connect_timeout"] == 30.0
        assert options["decode_responses"] is True

    def test_connect_failure_is_translated(self, fake_redis):
        fake_redis.ping_error = RedisConnectionError("Connection refused")
        store = RedisStoreClient(DatabaseConfig(), label="redis")

        with pytest.raises(StoreConnectionError, match="ping on redis: Connection refused"):
            store.connect()

        with pytest.raises(StoreConnectionError):
            store.ping()

    def test_large_values_use_extended_timeout(self, client, fake_redis):
        fake_redis.keyspace["h"] = HashValue({"a": "1", "b": "2", "c": "3"})

        assert client.get_value("h") == HashValue({"a": "1", "b": "2", "c": "3"})

        timeouts = {instance.options["socket_timeout"] for instance in fake_redis.instances}
        assert timeouts == {7.0, 45.0}

    def test_get_sorted_set(self, client, fake_redis):
        fake_redis.keyspace["z"] = SortedSetValue([("a", 1.0)])
        assert client.get_value("z") == SortedSetValue([("a", 1.0)])

    def test_missing_key(self, client):
        with pytest.raises(KeyNotFoundError):
            client.get_value("absent")

    def test_list_written_in_one_transaction(self, client, fake_redis):
        client.set_value("l", ListValue(["a", "b"]))

        commands = [c[0] for instance in fake_redis.instances for p in instance.pipelines for c in p]
        assert commands == ["delete", "rpush"]

    def test_empty_set_writes_placeholder_sequence(self, client, fake_redis):
        client.set_value("s", SetValue())

        pipeline = [p for instance in fake_redis.instances for p in instance.pipelines][0]
        assert [(name, args) for name, args, _ in pipeline] == [
            ("delete", ("s",)),
            ("sadd", ("s", EMPTY_PLACEHOLDER)),
            ("srem", ("s", EMPTY_PLACEHOLDER)),
        ]

    def test_write_error_is_translated(self, client):
        with pytest.raises(StoreError, match="write on valkey: READONLY") as exc_info:
            client.set_value("k", StringValue("v"))
        assert not isinstance(exc_info.value, StoreConnectionError)
        assert exc_info.value.key == "k"

    def test_ttl(self, client, fake_redis):
        fake_redis.keyspace["k"] = StringValue("v")
        assert client.get_ttl("k") == -1
        assert client.get_ttl("absent") == -1
        client.set_ttl("k", 60)
        with pytest.raises(KeyNotFoundError):
            client.set_ttl("absent", 60)

    def test_keys_and_exists(self, client, fake_redis):
        fake_redis.keyspace["b"] = StringValue("2")
        fake_redis.keyspace["a"] = StringValue("1")
        assert client.get_all_keys() == ["a", "b"]
        assert client.exists("a")
        assert not client.exists("c")

    def test_disconnect_closes_clients(self, client, fake_redis):
        client.disconnect()
        assert all(instance.closed for instance in fake_redis.instances)
