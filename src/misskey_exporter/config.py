"""
Configuration management for the Misskey Metrics Exporter.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/misskey-exporter/config.yml or --config path)
3. Environment variables (MISSKEY_EXPORTER_* prefix, __ for nesting)
4. Flat environment variables (PORT, DB_HOST, MISSKEY_URL, ...)
5. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/misskey-exporter/config.yml")
DEFAULT_ENV_PREFIX = "MISSKEY_EXPORTER_"

# Flat environment variable names and the nested key each one sets
FLAT_ENV_VARS: dict[str, tuple[str, str]] = {
    "PORT": ("server", "port"),
    "UPDATE_INTERVAL": ("sampling", "update_interval_ms"),
    "ENABLE_LOG_PARSING": ("sampling", "enable_log_parsing"),
    "MISSKEY_URL": ("misskey", "url"),
    "DB_HOST": ("database", "host"),
    "DB_PORT": ("database", "port"),
    "DB_NAME": ("database", "name"),
    "DB_USER": ("database", "user"),
    "DB_PASSWORD": ("database", "password"),
    "LOG_LEVEL": ("logging", "level"),
}


def _validate_port(value: int) -> int:
    if not 1 <= value <= 65535:
        raise ValueError(f"Port must be between 1 and 65535, got {value}")
    return value


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """HTTP listener settings for the /metrics and /health endpoints.

    Attributes:
        host: Bind address.
        port: Listen port.
    """

    host: str = Field(
        default="0.0.0.0",
        description="Bind address for the scrape endpoint",
    )
    port: int = Field(
        default=9090,
        description="Listen port for the scrape endpoint",
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate the listen port range."""
        return _validate_port(v)


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Misskey PostgreSQL connection settings.

    Attributes:
        host: Database host.
        port: Database port.
        name: Database name.
        user: Database user.
        password: Database password (never logged).
        connect_timeout_seconds: Handshake timeout for a single connect.
        max_reconnect_attempts: Bounded number of reconnection attempts.
        reconnect_delay_seconds: Fixed delay between reconnection attempts.
    """

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="misskey", description="Database name")
    user: str = Field(default="misskey", description="Database user")
    password: str = Field(default="", description="Database password")
    connect_timeout_seconds: int = Field(
        default=10,
        ge=1,
        description="Timeout for a single connection handshake",
    )
    max_reconnect_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum reconnection attempts before giving up",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay between reconnection attempts",
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate the database port range."""
        return _validate_port(v)

    def to_log_dict(self) -> dict[str, Any]:
        """Return connection parameters safe for logging."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.name,
            "user": self.user,
            "password_set": bool(self.password),
        }


# =============================================================================
# Misskey API Configuration
# =============================================================================


class MisskeyConfig(BaseModel):
    """Misskey HTTP API settings.

    Attributes:
        url: Base URL of the Misskey instance.
        request_timeout_seconds: Timeout for data requests.
        ping_timeout_seconds: Timeout for the liveness ping.
    """

    url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the Misskey instance",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for /api/stats and /api/meta requests",
    )
    ping_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for /api/ping",
    )

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so endpoints can be appended directly."""
        return v.rstrip("/")


# =============================================================================
# Sampling Configuration
# =============================================================================


class SamplingConfig(BaseModel):
    """Periodic sampling settings.

    Attributes:
        update_interval_ms: Period between sampling cycles in milliseconds.
        enable_log_parsing: Reserved toggle; accepted but has no effect.
    """

    update_interval_ms: int = Field(
        default=60000,
        gt=0,
        description="Period between sampling cycles in milliseconds",
    )
    enable_log_parsing: bool = Field(
        default=False,
        description="Reserved toggle for log parsing (no effect)",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON log lines instead of plain text.
        log_to_stdout: Whether to log to stdout.
    """

    level: str = Field(default="info", description="Log level")
    json_format: bool = Field(
        default=True,
        description="Emit JSON-formatted log lines",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Configuration
# =============================================================================


class ExporterConfig(BaseModel):
    """
    Main exporter configuration model.

    Attributes:
        server: HTTP listener settings.
        database: PostgreSQL connection settings.
        misskey: Misskey API settings.
        sampling: Periodic sampling settings.
        logging: Logging configuration.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    misskey: MisskeyConfig = Field(default_factory=MisskeyConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_log_dict(self) -> dict[str, Any]:
        """Return the configuration with secrets redacted, for startup logs."""
        data = self.model_dump()
        data["database"] = self.database.to_log_dict()
        return data


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from prefixed environment variables.

    Nested keys use a double underscore separator, e.g.
    MISSKEY_EXPORTER_DATABASE__HOST=db.internal. Values are passed through as
    strings and coerced by the Pydantic models.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = value

    return result


def _load_flat_env_config() -> dict[str, Any]:
    """Load the unprefixed variables listed in FLAT_ENV_VARS."""
    result: dict[str, Any] = {}
    for env_name, (section, key) in FLAT_ENV_VARS.items():
        value = os.environ.get(env_name)
        if value is not None:
            result.setdefault(section, {})[key] = value
    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Prometheus exporter for Misskey instances",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Override the listen port",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging in plain-text format",
    )

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.port is not None:
        result["server"] = {"port": parsed.port}

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result["logging"] = {"level": "debug", "json_format": False}

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> ExporterConfig:
    """
    Load configuration from all sources with layered precedence.

    Later sources override earlier ones: defaults, YAML file, prefixed
    environment variables, flat environment variables, command line.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            CLI --config argument or the default path when it exists.
        env_prefix: Prefix for nested environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured ExporterConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=[])
        >>> config.server.port
        9090
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, _load_flat_env_config())
    config_dict = _deep_merge(config_dict, cli_config)

    return ExporterConfig(**config_dict)
