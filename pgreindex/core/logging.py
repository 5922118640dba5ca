"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""Logging infrastructure for the reindex driver.

Console output goes through rich; the durable run log is an append-only file
handler. Records carry a per-run correlation id, and passwords are redacted
from messages before they reach any handler.
"""

import json
import logging
import os
import re
import sys
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from re import Pattern
from typing import Any

from rich.logging import RichHandler

# Name of the logger that receives one line per outcome record
RUN_LOGGER_NAME = "pgreindex.run"

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Thread-local storage for context data
_context_local = threading.local()


class CorrelationIdManager:
    """
    Manages correlation IDs using thread-local storage.

    Worker threads inherit nothing from the control thread, so the run id is
    also kept as a process-wide fallback set by the orchestrator.
    """

    def __init__(self) -> None:
        self.current_id: str | None = None

    def get_correlation_id(self) -> str:
        """Get the current correlation ID or generate a new one."""
        local_id = getattr(_context_local, "correlation_id", None)
        if local_id:
            return local_id
        if self.current_id is None:
            self.current_id = f"reindex-{uuid.uuid4()}"
        return self.current_id

    def set_correlation_id(self, correlation_id: str) -> None:
        """Set the current correlation ID for this thread and as the fallback."""
        _context_local.correlation_id = correlation_id
        self.current_id = correlation_id

    def clear_correlation_id(self) -> None:
        """Clear the current correlation ID."""
        if hasattr(_context_local, "correlation_id"):
            delattr(_context_local, "correlation_id")
        self.current_id = None


# Global correlation ID manager instance
correlation_manager = CorrelationIdManager()


class LogRedactor:
    """
    Redacts passwords from log messages.
    """

    def __init__(self) -> None:
        self.patterns: dict[str, Pattern] = {
            # Bare keys only; a closing quote before the separator is an identifier, not a key
            "password": re.compile(
                r'\b(password|passwd|secret)(\s*[:=]\s*)(["\']?)[^"\'&\s,}]+', re.IGNORECASE
            ),
            "dsn": re.compile(r"(postgres(?:ql)?(?:\+\w+)?://[^:/@\s]+:)[^@\s]+(@)"),
        }

    def redact(self, message: str) -> str:
        """
        Redact sensitive information from the message.
        """
        if not isinstance(message, str):
            return message

        message = self.patterns["password"].sub(r"\1\2\3[REDACTED]", message)
        return self.patterns["dsn"].sub(r"\1[REDACTED]\2", message)


# Global redactor instance
redactor = LogRedactor()


class ContextFilter(logging.Filter):
    """Adds the correlation id to every record and redacts its message."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_manager.get_correlation_id()
        if isinstance(record.msg, str):
            record.msg = redactor.redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                redactor.redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs log records as JSON.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "correlation_id"):
            log_data["correlation_id"] = record.correlation_id

        if getattr(record, "context_data", None):
            log_data["context"] = record.context_data

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, default=str)


class RichContextFormatter(logging.Formatter):
    """
    Formatter for Rich console output with context data.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        context = getattr(record, "context_data", None)
        if context:
            context_str = " ".join(f"[{k}={v}]" for k, v in context.items())
            message = f"{message} {context_str}"

        return message


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation_name: str,
    level: int = logging.INFO,
    context: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for logging operations with timing and context tracking.

    Args:
    ----
        logger: The logger instance to use
        operation_name: Name of the operation being performed
        level: Log level to use
        context: Additional context data to include in the logs

    Raises:
    ------
        Exception: Re-raises any exception that occurs within the context

    """
    start_time = time.time()
    context = dict(context or {})

    logger.log(level, f"Starting {operation_name}", extra={"context_data": context})

    try:
        yield
        duration = time.time() - start_time
        logger.log(
            level,
            f"Completed {operation_name} in {duration:.2f}s",
            extra={"context_data": context},
        )
    except Exception as e:
        duration = time.time() - start_time
        error_context = {
            **context,
            "error_type": type(e).__name__,
            "error": str(e),
            "duration": f"{duration:.2f}s",
        }
        logger.log(
            logging.ERROR,
            f"Failed {operation_name} after {duration:.2f}s",
            extra={"context_data": error_context},
        )
        raise


@contextmanager
def correlation_id(value: str | None = None) -> Iterator[str]:
    """
    Context manager for setting a correlation ID for the current run.

    Args:
    ----
        value: ID to use, or None to generate a new one

    Yields:
    ------
        str: The current correlation ID (either provided or generated)

    """
    previous_id = correlation_manager.current_id

    correlation_manager.set_correlation_id(value or f"reindex-{uuid.uuid4()}")

    try:
        yield correlation_manager.get_correlation_id()
    finally:
        if previous_id:
            correlation_manager.set_correlation_id(previous_id)
        else:
            correlation_manager.clear_correlation_id()


def configure_logging(
    level: int | str = logging.INFO,
    use_rich: bool = True,
    debug: bool = False,
) -> None:
    """
    Configure console logging for the pgreindex logger hierarchy.

    Args:
    ----
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL or integer)
        use_rich: Whether to use Rich for console output
        debug: Whether to force debug mode

    """
    # Convert string level to int if needed
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    if debug:
        level = logging.DEBUG

    if use_rich:
        console_handler: logging.Handler = RichHandler(
            rich_tracebacks=True, markup=False, show_time=True, show_path=debug
        )
        console_handler.setFormatter(RichContextFormatter("%(message)s"))
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    console_handler.addFilter(ContextFilter())
    # Milestones are printed directly; the console only needs warnings unless debugging
    console_handler.setLevel(level if debug else max(level, logging.WARNING))

    logger = logging.getLogger("pgreindex")
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        if not isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
    logger.addHandler(console_handler)

    logger.debug(f"Logging configured with level {logging.getLevelName(level)}")


def open_run_log(
    log_file: str | os.PathLike,
    json_format: bool = False,
    level: int | str = logging.INFO,
) -> logging.FileHandler:
    """
    Attach the append-only run log file.

    The handler is attached to the pgreindex logger (module diagnostics) and
    to the run logger, which does not propagate to the console.

    Args:
    ----
        log_file: Path of the log file; parent directories are created
        json_format: Whether to write JSON lines
        level: Lowest level of outcome records written to the file

    Returns:
    -------
        The attached file handler, to be passed to close_run_log

    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    if json_format:
        file_handler.setFormatter(JSONFormatter())
    else:
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    file_handler.addFilter(ContextFilter())

    package_logger = logging.getLogger("pgreindex")
    if package_logger.level == logging.NOTSET:
        package_logger.setLevel(level)
    package_logger.addHandler(file_handler)

    run_logger = logging.getLogger(RUN_LOGGER_NAME)
    run_logger.setLevel(level)
    run_logger.propagate = False
    run_logger.addHandler(file_handler)

    return file_handler


def close_run_log(file_handler: logging.Handler) -> None:
    """Detach and close a handler returned by open_run_log."""
    for name in ("pgreindex", RUN_LOGGER_NAME):
        logging.getLogger(name).removeHandler(file_handler)
    file_handler.close()
