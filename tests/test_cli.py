"""Tests for the command line interface."""

import pytest
import yaml
from click.testing import CliRunner
from conftest import FakeStoreClient

from kv_migration import __version__
from kv_migration.cli import main as cli_main
from kv_migration.cli.main import cli
from kv_migration.client.exceptions import StoreConnectionError, StoreError
from kv_migration.values import HashValue, ListValue, StringValue


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    """Config with no retries, no progress bar and a resume file in tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "redis": {"host": "redis.test", "password": "s3cret"},
                "valkey": {"host": "valkey.test"},
                "migration": {"retry_attempts": 0},
                "engine": {
                    "show_progress_bar": False,
                    "resume_db": str(tmp_path / "resume.db"),
                    "batch_size": 2,
                },
            }
        )
    )
    return path


@pytest.fixture
def stores(monkeypatch):
    """Replace the Redis client with in-memory stores keyed by label."""
    created = {
        "redis": FakeStoreClient(label="redis", host="redis.test", port=6379),
        "valkey": FakeStoreClient(label="valkey", host="valkey.test", port=6380),
    }

    def factory(db_config, timeout_policy=None, label="redis"):
        return created[label]

    monkeypatch.setattr("kv_migration.cli.context.RedisStoreClient", factory)
    created["redis"].put("user:1", HashValue({"name": "ada"}))
    created["redis"].put("session:abc", StringValue("token"), ttl=600)
    created["redis"].put("queue:jobs", ListValue(["j1", "j2"]))
    return created


@pytest.fixture
def invoke(runner, tmp_path, config_file):
    """Run the CLI with the test config and a log file in tmp_path."""

    def run(*args, config=True):
        base = ["--log-file", str(tmp_path / "logs" / "cli.log")]
        if config:
            base += ["--config", str(config_file)]
        return runner.invoke(cli, [*base, *args])

    return run


class TestCliBasics:
    """Test version output and help."""

    def test_version_command(self, invoke):
        result = invoke("version", config=False)
        assert result.exit_code == 0
        assert f"kv-bridge version {__version__}" in result.output

    def test_version_option(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("migrate", "verify", "config"):
            assert command in result.output

    def test_missing_config_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "version"])
        assert result.exit_code == 2

    def test_main_returns_exit_code(self, monkeypatch, tmp_path):
        monkeypatch.setattr(
            "sys.argv", ["kv-bridge", "--log-file", str(tmp_path / "main.log"), "version"]
        )
        assert cli_main.main() == 0


class TestConfigCommands:
    """Test config validate and show."""

    def test_show_redacts_passwords(self, invoke):
        result = invoke("config", "show")

        assert result.exit_code == 0
        assert "s3cret" not in result.output
        assert "[REDACTED]" in result.output
        assert "redis.test" in result.output

    def test_validate(self, invoke):
        result = invoke("config", "validate")
        assert result.exit_code == 0
        assert "Configuration is valid!" in result.output

    def test_validate_with_connectivity(self, invoke, stores):
        result = invoke("config", "validate", "--check-connectivity")

        assert result.exit_code == 0
        assert "Source and target are reachable" in result.output
        assert stores["redis"].calls["ping"] == 1
        assert stores["valkey"].calls["ping"] == 1

    def test_invalid_config(self, invoke, config_file):
        config_file.write_text("engine:\n  batch_size: 0\n")
        result = invoke("config", "validate")
        assert result.exit_code == 2


class TestMigrateCommand:
    """Test the migrate command."""

    def test_dry_run(self, invoke, stores):
        result = invoke("migrate", "--dry-run")

        assert result.exit_code == 0
        assert "DRY RUN MODE" in result.output
        assert "Total keys: 3" in result.output
        assert "Keys to migrate: 3" in result.output
        assert "Sampled keys by type" in result.output
        for key_type in ("hash", "list", "string"):
            assert key_type in result.output
        assert stores["valkey"].data == {}

    def test_migrate(self, invoke, stores):
        result = invoke("migrate")

        assert result.exit_code == 0, result.output
        assert "Source: redis.test:6379/0 -> Target: valkey.test:6380/0" in result.output
        assert "Verification: 3/3 keys verified" in result.output
        assert "Migrated 3 keys" in result.output
        assert stores["valkey"].data == stores["redis"].data

    def test_option_overrides(self, invoke, stores):
        result = invoke("migrate", "--target-host", "valkey.override", "--target-db", "2", "--no-verify")

        assert result.exit_code == 0, result.output
        assert "Target: valkey.override:6380/2" in result.output
        assert "Verification:" not in result.output

    def test_failed_key_exits_6(self, invoke, stores):
        stores["redis"].fail("get_value", StoreError("WRONGTYPE"), key="queue:jobs")

        result = invoke("migrate")

        assert result.exit_code == 6
        assert "queue:jobs" in result.output
        assert "1 failed keys" in result.output

    def test_connection_error_exits_3(self, invoke, stores):
        stores["valkey"].fail("connect", StoreConnectionError("NOAUTH invalid password"))

        result = invoke("migrate")

        assert result.exit_code == 3
        assert "Connection Error" in result.output

    def test_invalid_override_exits_2(self, invoke, stores):
        result = invoke("migrate", "--max-concurrency", "500")
        assert result.exit_code == 2


class TestVerifyCommand:
    """Test the verify command."""

    def test_all_keys_verified(self, invoke, stores):
        for key, value in stores["redis"].data.items():
            stores["valkey"].put(key, value)

        result = invoke("verify")

        assert result.exit_code == 0
        assert "All 3 keys verified" in result.output
        assert stores["valkey"].calls["set_value"] == 0

    def test_mismatch_exits_6(self, invoke, stores):
        stores["valkey"].put("user:1", HashValue({"name": "bob"}))

        result = invoke("verify")

        assert result.exit_code == 6
        assert "Verification: 0/3 keys verified" in result.output
        assert "keys failed verification" in result.output
