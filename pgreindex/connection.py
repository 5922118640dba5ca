"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Database connection provisioning with bounded connection pooling.

Each database processed by a run gets one DatabaseHandle: a SQLAlchemy engine
backed by a QueuePool whose idle and open connection counts are capped, so the
worker pool cannot put unbounded load on the server. Handles are verified with
a ping before they are returned and are closed through the connect() context
manager on every exit path.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from pgreindex.core.config import ConnectionSettings, PoolSettings
from pgreindex.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


class DatabaseHandle:
    """
    Pooled connection handle for one database.

    The underlying QueuePool is safe for concurrent use; every call checks a
    connection out for the duration of one statement and returns it afterwards.
    """

    def __init__(self, settings: ConnectionSettings, pool: PoolSettings | None = None):
        """
        Initialize the handle. No connection is opened until the first call.

        Args:
            settings: Credential template already targeting this database
            pool: Pool bounds and statement settings

        """
        self.settings = settings
        self.pool_settings = pool or PoolSettings()
        self.connections_opened = 0
        self._lock = threading.Lock()
        self.engine = self._create_engine()

    @property
    def database(self) -> str:
        return self.settings.dbname

    def _create_engine(self) -> Engine:
        """
        Create SQLAlchemy engine with bounded connection pooling.

        Returns:
            Engine: SQLAlchemy engine instance

        """
        connect_args: dict[str, Any] = {
            "application_name": self.pool_settings.application_name,
        }
        if self.pool_settings.statement_timeout:
            timeout_ms = int(self.pool_settings.statement_timeout * 1000)
            connect_args["options"] = f"-c statement_timeout={timeout_ms}"

        engine = create_engine(
            self.settings.get_connection_url(),
            poolclass=QueuePool,
            pool_size=self.pool_settings.pool_size,
            max_overflow=self.pool_settings.max_overflow,
            pool_timeout=self.pool_settings.pool_timeout,
            pool_pre_ping=True,  # Check connection health before use
            # REINDEX CONCURRENTLY refuses to run inside a transaction block
            isolation_level="AUTOCOMMIT",
            connect_args=connect_args,
        )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, conn_record):
            with self._lock:
                self.connections_opened += 1

        return engine

    def ping(self) -> None:
        """Run a trivial query to prove the database is reachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def execute(self, statement: str) -> None:
        """
        Execute one statement on a pooled connection.

        The statement is sent as-is to the driver so quoted identifiers
        containing colons or percent signs are not treated as parameters.
        """
        with self.engine.connect() as conn:
            conn.exec_driver_sql(statement)

    def fetch_all(self, query: str, params: dict[str, Any] | None = None) -> list[tuple]:
        """Run a catalog query and return all rows as tuples."""
        with self.engine.connect() as conn:
            result = conn.execute(text(query), params or {})
            return [tuple(row) for row in result]

    def pool_status(self) -> str:
        """Pool occupancy (size, idle, overflow, checked out), for debug logging."""
        return self.engine.pool.status()

    def close(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()
        logger.debug(
            f"Closed connection pool for {self.settings.describe()} "
            f"after opening {self.connections_opened} connections"
        )


def open_database(
    settings: ConnectionSettings,
    database: str | None = None,
    pool: PoolSettings | None = None,
) -> DatabaseHandle:
    """
    Open a pooled handle to a database and verify it is reachable.

    Args:
        settings: Credential template
        database: Database to target; defaults to the template's dbname
        pool: Pool bounds and statement settings

    Returns:
        A live DatabaseHandle; the caller owns it and must close it

    Raises:
        DatabaseConnectionError: If the engine cannot be created or the ping fails

    """
    target = settings.for_database(database) if database else settings
    try:
        handle = DatabaseHandle(target, pool)
    except SQLAlchemyError as e:
        raise DatabaseConnectionError(target.host, target.port, target.dbname, e) from e

    try:
        handle.ping()
    except SQLAlchemyError as e:
        handle.close()
        raise DatabaseConnectionError(target.host, target.port, target.dbname, e) from e

    limits = handle.pool_settings
    logger.debug(
        f"Connected to {target.describe()} "
        f"(idle<={limits.pool_size}, open<={limits.max_open})"
    )
    return handle


@contextmanager
def connect(
    settings: ConnectionSettings,
    database: str | None = None,
    pool: PoolSettings | None = None,
) -> Iterator[DatabaseHandle]:
    """
    Scoped acquisition of a DatabaseHandle.

    Yields:
        A live handle, closed when the block exits for any reason

    """
    handle = open_database(settings, database, pool)
    try:
        yield handle
    finally:
        handle.close()
