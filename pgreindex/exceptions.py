"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Error types raised by the reindex driver.

Only TaskExecutionError is recovered locally (it ends up in an outcome record);
every other error is fatal for the run and is turned into a non-zero exit by the CLI.
"""


class ReindexError(Exception):
    """Base class for all reindex driver errors."""


class ConfigError(ReindexError):
    """Raised when the configuration file is missing or malformed."""


class DatabaseConnectionError(ReindexError):
    """Raised when a database cannot be reached or authenticated against."""

    def __init__(self, host: str, port: int, database: str, cause: Exception | None = None):
        self.host = host
        self.port = port
        self.database = database
        self.cause = cause
        message = f"Cannot connect to database {database} on {host}:{port}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class DiscoveryError(ReindexError):
    """Raised when a catalog query fails."""

    def __init__(self, database: str, what: str, cause: Exception | None = None):
        self.database = database
        self.what = what
        self.cause = cause
        message = f"Failed to list {what} in database {database}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class TaskExecutionError(ReindexError):
    """Raised when a single rebuild statement fails."""

    def __init__(self, task_id: str, statement: str, cause: Exception | None = None):
        self.task_id = task_id
        self.statement = statement
        self.cause = cause
        message = f"Error executing {statement}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class AggregationError(ReindexError):
    """Raised when the number of outcomes does not match the number of tasks."""
