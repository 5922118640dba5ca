"""
Fixtures package for the pgreindex test suite.

This package provides reusable fixtures and fakes so that tests never need
a running PostgreSQL server.
"""

# Export base fixtures
from tests.fixtures.base import app_config, clean_env, config_data, config_file, reset_loggers

# Export database fixtures
from tests.fixtures.database import FakeDatabaseHandle, FakeServer, catalog_failure, fake_server
