"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Base fixtures for the pgreindex test suite.

Configuration files, configurations and log isolation shared by unit and
integration tests.
"""

import json
import logging
import os
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from pgreindex.core.config import AppConfig
from pgreindex.core.logging import RUN_LOGGER_NAME


@pytest.fixture
def config_data(tmp_path: Path) -> dict[str, Any]:
    """Contents of a valid configuration file, logging into tmp_path."""
    return {
        "host": "h",
        "port": "5432",
        "user": "maintainer",
        "password": "s3cret",
        "dbname": "postgres",
        "sslmode": "disable",
        "log_dir": str(tmp_path / "logs"),
    }


@pytest.fixture
def config_file(tmp_path: Path, config_data: dict[str, Any]) -> Path:
    """A valid configuration file on disk."""
    path = tmp_path / "conf" / "config.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(config_data))
    return path


@pytest.fixture
def app_config(config_data: dict[str, Any]) -> AppConfig:
    """Validated configuration built from config_data."""
    return AppConfig.from_dict(config_data)


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Remove PGREINDEX_ variables for the duration of a test."""
    original_environ = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("PGREINDEX_"):
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_environ)


@pytest.fixture(autouse=True)
def reset_loggers() -> Generator[None, None, None]:
    """Restore the pgreindex loggers after a test has configured them."""
    names = ("pgreindex", RUN_LOGGER_NAME)
    before = {name: list(logging.getLogger(name).handlers) for name in names}
    settings = {
        name: (logging.getLogger(name).level, logging.getLogger(name).propagate) for name in names
    }

    yield

    for name in names:
        logger = logging.getLogger(name)
        logger.setLevel(settings[name][0])
        logger.propagate = settings[name][1]
        for handler in list(logger.handlers):
            if handler not in before[name]:
                logger.removeHandler(handler)
                handler.close()
