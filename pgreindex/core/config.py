"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Configuration management for pgreindex.

This module loads the JSON configuration file once at startup, applies environment
variable and command-line overrides, and validates the result. The credential
template is immutable for the whole run; the target database is substituted per
iteration with ConnectionSettings.for_database.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.engine import URL

from pgreindex.exceptions import ConfigError

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./conf/config.json"
DEFAULT_LOG_DIR = "./logs"

# Databases that are never rebuilt
DEFAULT_DATABASE_DENYLIST = ("postgres", "template0", "template1", "zcloud")

SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")


class BaseConfig(BaseModel):
    """Base configuration class with common functionality."""

    # Class variable to store environment variable prefixes
    ENV_PREFIX: ClassVar[str] = "PGREINDEX_"

    @classmethod
    def get_env_var(cls, key: str, default: Any = None) -> Any:
        """
        Get an environment variable with the class prefix.

        Args:
        ----
            key: Key name without prefix
            default: Default value if environment variable is not found

        Returns:
        -------
            The environment variable value or default

        """
        env_key = f"{cls.ENV_PREFIX}{key.upper()}"
        return os.environ.get(env_key, default)


class LoggingConfig(BaseConfig):
    """Configuration for logging settings."""

    level: str = Field(
        default_factory=lambda: os.environ.get("PGREINDEX_LOG_LEVEL", "INFO"),
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_dir: str = Field(
        default=DEFAULT_LOG_DIR,
        description="Directory that receives the per-run log file",
    )
    use_rich: bool = Field(
        default=True,
        description="Whether to use rich for console log formatting",
    )
    json_format: bool = Field(
        default=False,
        description="Whether to write the run log as JSON lines",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, value):
        """Validate that the log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        value = value.upper()
        if value not in valid_levels:
            logger.warning(f"Invalid log level '{value}', defaulting to INFO")
            return "INFO"
        return value

    def log_file_for(self, host: str, port: int) -> Path:
        """Path of the append-only run log for one server."""
        return Path(self.log_dir) / f"reindex_index_{host}_{port}.log"


class ConnectionSettings(BaseConfig):
    """Credential template shared by every connection of a run."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="Database server host")
    port: int = Field(default=5432, gt=0, lt=65536, description="Database server port")
    user: str = Field(..., min_length=1, description="Database user")
    password: str = Field(default="", description="Database password", repr=False)
    dbname: str = Field(
        default="postgres",
        min_length=1,
        description="Initial database used for catalog discovery",
    )
    sslmode: str = Field(default="prefer", description="libpq transport security mode")

    @field_validator("sslmode")
    @classmethod
    def validate_sslmode(cls, value):
        """Validate the sslmode against the modes libpq understands."""
        value = value.lower()
        if value not in SSL_MODES:
            raise ValueError(f"Unsupported sslmode '{value}', expected one of {', '.join(SSL_MODES)}")
        return value

    def for_database(self, database: str) -> "ConnectionSettings":
        """Return a copy of the template targeting another database."""
        return self.model_copy(update={"dbname": database})

    def get_connection_url(self) -> URL:
        """
        Get the SQLAlchemy URL for this connection.

        Returns
        -------
            Database URL for the psycopg2 driver

        """
        return URL.create(
            "postgresql+psycopg2",
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.dbname,
            query={"sslmode": self.sslmode},
        )

    def describe(self) -> str:
        """Password-free description for logs and error messages."""
        return f"{self.user}@{self.host}:{self.port}/{self.dbname}"


class PoolSettings(BaseConfig):
    """Connection pool bounds and per-statement settings."""

    pool_size: int = Field(
        default=10,
        gt=0,
        description="Connections kept idle in the pool",
    )
    max_overflow: int = Field(
        default=10,
        ge=0,
        description="Extra connections opened on demand above pool_size",
    )
    pool_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait for a free connection",
    )
    statement_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Per-statement timeout in seconds (None for no limit)",
    )
    application_name: str = Field(
        default="pgreindex",
        description="application_name reported to the server",
    )

    @property
    def max_open(self) -> int:
        """Ceiling on simultaneously open connections."""
        return self.pool_size + self.max_overflow


class AppConfig(BaseConfig):
    """Main application configuration that aggregates all other configurations."""

    connection: ConnectionSettings
    pool: PoolSettings = Field(default_factory=PoolSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    workers: int = Field(
        default=10,
        gt=0,
        description="Concurrent workers per database",
    )
    exclude_databases: list[str] = Field(
        default_factory=list,
        description="Database names skipped in addition to the built-in denylist",
    )
    on_database_error: Literal["abort", "skip"] = Field(
        default="abort",
        description="Whether a connection or discovery failure aborts the run or skips the database",
    )
    concurrently: bool = Field(
        default=False,
        description="Rebuild with REINDEX ... CONCURRENTLY",
    )
    queue_capacity: int = Field(
        default=0,
        ge=0,
        description="Task source capacity (0 sizes it to the task count)",
    )
    debug: bool = Field(
        default=False,
        description="Debug mode flag",
    )

    @property
    def database_denylist(self) -> tuple[str, ...]:
        """Built-in denylist plus configured exclusions."""
        extra = [name for name in self.exclude_databases if name not in DEFAULT_DATABASE_DENYLIST]
        return DEFAULT_DATABASE_DENYLIST + tuple(extra)

    @property
    def log_file(self) -> Path:
        """Run log path derived from host and port."""
        return self.logging.log_file_for(self.connection.host, self.connection.port)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **overrides) -> "AppConfig":
        """
        Create a configuration from the flat JSON layout of the config file.

        Args:
        ----
            data: Parsed configuration file
            **overrides: Values that take precedence (None values are ignored)

        Returns:
        -------
            Validated application configuration

        """
        connection = {
            key: data[key]
            for key in ("host", "port", "user", "password", "dbname", "sslmode")
            if key in data
        }
        # Environment variables win over the file so secrets can stay out of it
        for key in ("host", "port", "user", "password", "dbname", "sslmode"):
            env_value = cls.get_env_var(key)
            if env_value is not None:
                connection[key] = env_value

        pool = {
            key: data[key]
            for key in ("pool_size", "max_overflow", "pool_timeout", "statement_timeout")
            if key in data
        }
        logging_config = {
            key: data[key]
            for key in ("log_dir", "log_level", "json_format", "use_rich")
            if key in data
        }
        if "log_level" in logging_config:
            logging_config["level"] = logging_config.pop("log_level")

        config: dict[str, Any] = {
            "connection": connection,
            "pool": pool,
            "logging": logging_config,
        }
        for key in ("workers", "exclude_databases", "on_database_error", "concurrently", "queue_capacity"):
            if key in data:
                config[key] = data[key]

        # Override with any directly provided values
        for key, value in overrides.items():
            if value is None:
                continue
            if key == "log_dir":
                config["logging"]["log_dir"] = value
            else:
                config[key] = value

        return cls(**config)


def load_config(path: str | Path = DEFAULT_CONFIG_PATH, **overrides) -> AppConfig:
    """
    Load and validate the configuration file.

    Args:
    ----
        path: Path to the JSON configuration file
        **overrides: Values taking precedence over the file (e.g. from the CLI)

    Returns:
    -------
        The application configuration

    Raises:
    ------
        ConfigError: If the file is missing, is not valid JSON, or fails validation

    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Malformed configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Malformed configuration file {path}: expected a JSON object")

    try:
        config = AppConfig.from_dict(data, **overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.debug(f"Loaded configuration for {config.connection.describe()} from {path}")
    return config
