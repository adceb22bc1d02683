"""
Tests for the configuration module.

This test module validates:
- Configuration loading from YAML files
- Prefixed and flat environment variable overrides
- CLI argument overrides
- Configuration precedence (defaults < YAML < env vars < CLI args)
- Pydantic model validation with invalid inputs
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest import mock

import pytest
import yaml
from pydantic import ValidationError

from misskey_exporter.config import (
    DatabaseConfig,
    ExporterConfig,
    LoggingConfig,
    MisskeyConfig,
    SamplingConfig,
    ServerConfig,
    _deep_merge,
    _load_env_config,
    _load_flat_env_config,
    _load_yaml_config,
    _parse_cli_args,
    load_config,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_environment(tmp_path: Path) -> Iterator[None]:
    """Isolate tests from the host environment and default config file."""
    with mock.patch.dict(os.environ, {}, clear=True), mock.patch(
        "misskey_exporter.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yml"
    ):
        yield


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file path for testing."""
    return tmp_path / "config.yml"


@pytest.fixture
def sample_yaml_config() -> dict[str, Any]:
    """Sample YAML configuration for testing."""
    return {
        "server": {"port": 9100},
        "database": {
            "host": "db.internal",
            "name": "mk",
            "password": "hunter2",
        },
        "misskey": {"url": "https://misskey.example/"},
        "sampling": {"update_interval_ms": 30000},
        "logging": {"level": "debug"},
    }


def write_yaml(path: Path, data: dict[str, Any]) -> None:
    with open(path, "w") as f:
        yaml.dump(data, f)


# =============================================================================
# Tests for Default Configuration
# =============================================================================


class TestDefaultConfiguration:
    """Tests for default configuration values."""

    def test_exporter_config_defaults(self) -> None:
        """Test that ExporterConfig has the documented defaults."""
        config = ExporterConfig()

        assert config.server.port == 9090
        assert config.sampling.update_interval_ms == 60000
        assert config.sampling.enable_log_parsing is False
        assert config.misskey.url == "http://localhost:3000"
        assert config.database.host == "localhost"
        assert config.database.port == 5432
        assert config.database.name == "misskey"
        assert config.database.user == "misskey"
        assert config.database.password == ""
        assert config.logging.level == "info"

    def test_database_config_defaults(self) -> None:
        config = DatabaseConfig()

        assert config.max_reconnect_attempts == 3
        assert config.reconnect_delay_seconds == 5.0
        assert config.connect_timeout_seconds == 10

    def test_misskey_config_defaults(self) -> None:
        config = MisskeyConfig()

        assert config.request_timeout_seconds == 10.0
        assert config.ping_timeout_seconds == 5.0


# =============================================================================
# Tests for Pydantic Validation
# =============================================================================


class TestValidation:
    """Tests for model validation."""

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_invalid_server_port(self, port: int) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=port)

    def test_invalid_database_port(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseConfig(port=70000)

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            SamplingConfig(update_interval_ms=0)

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError, match="Invalid log level"):
            LoggingConfig(level="verbose")

    def test_log_level_normalized(self) -> None:
        assert LoggingConfig(level="DEBUG").level == "debug"
        assert LoggingConfig(level="warn").level == "warning"

    def test_url_trailing_slash_stripped(self) -> None:
        assert MisskeyConfig(url="https://misskey.example/").url == (
            "https://misskey.example"
        )

    def test_to_log_dict_redacts_password(self) -> None:
        config = ExporterConfig(database=DatabaseConfig(password="hunter2"))

        data = config.to_log_dict()

        assert "hunter2" not in str(data)
        assert data["database"]["password_set"] is True
        assert data["server"]["port"] == 9090


# =============================================================================
# Tests for YAML Configuration Loading
# =============================================================================


class TestYAMLConfigLoading:
    """Tests for loading configuration from YAML files."""

    def test_load_yaml_config(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        write_yaml(temp_config_file, sample_yaml_config)

        assert _load_yaml_config(temp_config_file) == sample_yaml_config

    def test_load_empty_yaml(self, temp_config_file: Path) -> None:
        temp_config_file.write_text("")

        assert _load_yaml_config(temp_config_file) == {}

    def test_load_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            _load_yaml_config(tmp_path / "nope.yml")

    def test_load_config_from_yaml(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        write_yaml(temp_config_file, sample_yaml_config)

        config = load_config(config_path=temp_config_file, cli_args=[])

        assert config.server.port == 9100
        assert config.database.host == "db.internal"
        assert config.misskey.url == "https://misskey.example"
        assert config.sampling.update_interval_ms == 30000
        assert config.logging.level == "debug"
        # Default preserved
        assert config.database.user == "misskey"

    def test_load_config_via_cli_path(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        write_yaml(temp_config_file, sample_yaml_config)

        config = load_config(cli_args=["--config", str(temp_config_file)])

        assert config.server.port == 9100

    def test_invalid_yaml_value_raises(self, temp_config_file: Path) -> None:
        write_yaml(temp_config_file, {"server": {"port": 0}})

        with pytest.raises(ValidationError):
            load_config(config_path=temp_config_file, cli_args=[])


# =============================================================================
# Tests for Environment Variable Loading
# =============================================================================


class TestEnvironmentVariables:
    """Tests for environment variable overrides."""

    def test_load_env_config_nested(self) -> None:
        env_vars = {
            "MISSKEY_EXPORTER_DATABASE__HOST": "db.internal",
            "MISSKEY_EXPORTER_SAMPLING__UPDATE_INTERVAL_MS": "15000",
            "UNRELATED": "x",
        }

        with mock.patch.dict(os.environ, env_vars):
            config_dict = _load_env_config()

        assert config_dict == {
            "database": {"host": "db.internal"},
            "sampling": {"update_interval_ms": "15000"},
        }

    def test_load_flat_env_config(self) -> None:
        env_vars = {
            "PORT": "9200",
            "UPDATE_INTERVAL": "5000",
            "MISSKEY_URL": "https://mk.example",
            "DB_HOST": "pg",
            "DB_PASSWORD": "1",
        }

        with mock.patch.dict(os.environ, env_vars):
            config_dict = _load_flat_env_config()

        assert config_dict["server"] == {"port": "9200"}
        assert config_dict["sampling"] == {"update_interval_ms": "5000"}
        assert config_dict["misskey"] == {"url": "https://mk.example"}
        assert config_dict["database"] == {"host": "pg", "password": "1"}

    def test_flat_env_values_are_coerced(self) -> None:
        env_vars = {
            "PORT": "9200",
            "DB_PORT": "6432",
            "ENABLE_LOG_PARSING": "true",
            "DB_PASSWORD": "1",
            "LOG_LEVEL": "WARN",
        }

        with mock.patch.dict(os.environ, env_vars):
            config = load_config(cli_args=[])

        assert config.server.port == 9200
        assert config.database.port == 6432
        assert config.sampling.enable_log_parsing is True
        assert config.database.password == "1"
        assert config.logging.level == "warning"

    def test_invalid_env_value_raises(self) -> None:
        with mock.patch.dict(os.environ, {"UPDATE_INTERVAL": "soon"}):
            with pytest.raises(ValidationError):
                load_config(cli_args=[])


# =============================================================================
# Tests for CLI Argument Parsing
# =============================================================================


class TestCLIArgumentParsing:
    """Tests for command-line argument parsing."""

    def test_parse_cli_args_config_path(self) -> None:
        result = _parse_cli_args(["--config", "/path/to/config.yml"])
        assert result["_config_path"] == "/path/to/config.yml"

    def test_parse_cli_args_port(self) -> None:
        result = _parse_cli_args(["--port", "9300"])
        assert result["server"]["port"] == 9300

    def test_parse_cli_args_log_level(self) -> None:
        result = _parse_cli_args(["--log-level", "error"])
        assert result["logging"]["level"] == "error"

    def test_parse_cli_args_debug(self) -> None:
        result = _parse_cli_args(["--debug"])
        assert result["logging"] == {"level": "debug", "json_format": False}

    def test_parse_cli_args_empty(self) -> None:
        assert _parse_cli_args([]) == {}


# =============================================================================
# Tests for Configuration Precedence
# =============================================================================


class TestConfigurationPrecedence:
    """Tests for configuration layering precedence."""

    def test_full_precedence_chain(self, temp_config_file: Path) -> None:
        """Test defaults < YAML < prefixed env < flat env < CLI args."""
        write_yaml(
            temp_config_file,
            {
                "server": {"port": 9100},
                "database": {"host": "yaml-host", "name": "yaml-db", "user": "yaml"},
                "logging": {"level": "info"},
            },
        )
        env_vars = {
            "MISSKEY_EXPORTER_DATABASE__HOST": "prefixed-host",
            "MISSKEY_EXPORTER_DATABASE__NAME": "prefixed-db",
            "DB_NAME": "flat-db",
            "PORT": "9200",
            "LOG_LEVEL": "warning",
        }

        with mock.patch.dict(os.environ, env_vars):
            config = load_config(
                config_path=temp_config_file, cli_args=["--port", "9300"]
            )

        # CLI overrides flat env which overrides YAML
        assert config.server.port == 9300
        # Flat env overrides prefixed env
        assert config.database.name == "flat-db"
        # Prefixed env overrides YAML
        assert config.database.host == "prefixed-host"
        # Flat env overrides YAML
        assert config.logging.level == "warning"
        # YAML value preserved
        assert config.database.user == "yaml"
        # Default value preserved
        assert config.database.port == 5432

    def test_debug_flag_overrides_log_level(self) -> None:
        with mock.patch.dict(os.environ, {"LOG_LEVEL": "error"}):
            config = load_config(cli_args=["--debug"])

        assert config.logging.level == "debug"
        assert config.logging.json_format is False

    def test_defaults_only(self) -> None:
        config = load_config(cli_args=[])

        assert config == ExporterConfig()


# =============================================================================
# Tests for Deep Merge
# =============================================================================


class TestDeepMerge:
    """Tests for deep merge functionality."""

    def test_deep_merge_simple(self) -> None:
        result = _deep_merge({"a": 1, "b": 2}, {"b": 3})
        assert result == {"a": 1, "b": 3}

    def test_deep_merge_nested(self) -> None:
        result = _deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"c": 3, "d": 4}})
        assert result == {"a": {"b": 1, "c": 3, "d": 4}}

    def test_deep_merge_does_not_modify_original(self) -> None:
        base = {"a": {"b": 1}}
        override = {"a": {"c": 2}}

        result = _deep_merge(base, override)

        assert result == {"a": {"b": 1, "c": 2}}
        assert base == {"a": {"b": 1}}
        assert override == {"a": {"c": 2}}
