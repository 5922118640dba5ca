"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Run orchestration.

Databases are processed one at a time, in discovery order: connect, discover
indexes, generate tasks, run the worker pool, drain its outcomes, close the
connection. The next database starts only after every outcome of the current
one has been recorded.
"""

import logging
import time
from collections.abc import Callable
from contextlib import AbstractContextManager

from rich.console import Console

from pgreindex.catalog import CatalogDiscoverer
from pgreindex.connection import DatabaseHandle, connect
from pgreindex.core.config import AppConfig, ConnectionSettings, PoolSettings
from pgreindex.core.logging import correlation_id, log_operation
from pgreindex.exceptions import DatabaseConnectionError, DiscoveryError
from pgreindex.models import DatabaseStatus, DatabaseSummary, RunState, RunSummary
from pgreindex.reporting import ProgressReporter, ResultAggregator, RunLogger
from pgreindex.tasks import generate_tasks
from pgreindex.work_queue import CancellationToken, WorkerPool

logger = logging.getLogger("pgreindex.orchestrator")

Connector = Callable[
    [ConnectionSettings, str | None, PoolSettings | None], AbstractContextManager[DatabaseHandle]
]


class ReindexRunner:
    """
    Drives a full reindex run across every user database of one server.
    """

    def __init__(
        self,
        config: AppConfig,
        console: Console | None = None,
        run_logger: RunLogger | None = None,
        connector: Connector = connect,
        cancel_token: CancellationToken | None = None,
        show_progress: bool = True,
    ):
        """
        Initialize the runner.

        Args:
            config: Validated application configuration
            console: Console for milestones and progress bars
            run_logger: Durable outcome log
            connector: Factory returning a scoped DatabaseHandle
            cancel_token: Token shared with every worker pool of the run
            show_progress: Whether to render progress bars
        """
        self.config = config
        self.console = console or Console()
        self.run_logger = run_logger or RunLogger()
        self.connector = connector
        self.cancel_token = cancel_token or CancellationToken()
        self.show_progress = show_progress
        self.aggregator = ResultAggregator(self.run_logger)

    def _milestone(self, message: str, echo: bool = True) -> None:
        self.run_logger.milestone(message)
        if echo:
            self.console.print(message, markup=False, highlight=False)

    def run(self) -> RunSummary:
        """
        Rebuild every index of every user database.

        Returns:
            Per-database summary of the run

        Raises:
            DatabaseConnectionError: If a database cannot be reached (unless
                on_database_error is "skip", and always for the initial database)
            DiscoveryError: If a catalog query fails (same policy)
            AggregationError: If outcomes were lost or duplicated
        """
        summary = RunSummary()
        pool_settings = self.config.pool
        if self.config.workers > pool_settings.max_open:
            logger.warning(
                f"{self.config.workers} workers share at most {pool_settings.max_open} connections; "
                "workers will queue for a free connection"
            )

        with correlation_id():
            try:
                databases = self.discover_databases()
                for database in databases:
                    if self.cancel_token.is_cancelled:
                        break
                    summary.databases.append(self.process_database(database))
            except KeyboardInterrupt:
                self.cancel_token.cancel("interrupted")

            if self.cancel_token.is_cancelled:
                summary.cancelled = True
                self._milestone(f"Run cancelled: {self.cancel_token.reason}")
            else:
                self._milestone("All tasks completed")

        return summary

    def discover_databases(self) -> list[str]:
        """Connect to the initial database and list the databases to rebuild."""
        settings = self.config.connection
        with self.connector(settings, None, self.config.pool) as handle:
            self._milestone("Successfully connected to the postgres database")
            databases = CatalogDiscoverer(handle).list_databases(self.config.database_denylist)
        self.run_logger.milestone(f"Discovered {len(databases)} databases: {', '.join(databases)}")
        return databases

    def process_database(self, database: str) -> DatabaseSummary:
        """
        Rebuild every index of one database.

        Returns:
            Summary for the database

        """
        self.console.print(f"Start reindex on database {database}", markup=False, highlight=False)
        started = time.perf_counter()
        try:
            with self.connector(self.config.connection, database, self.config.pool) as handle:
                self._milestone(f"Connected to business database: {database}", echo=False)

                with log_operation(
                    logger, "index discovery", level=logging.DEBUG, context={"database": database}
                ):
                    indexes = CatalogDiscoverer(handle).list_indexes()
                if not indexes:
                    self._milestone(f"No indexes found in database: {database}, skipping...")
                    return DatabaseSummary(database=database, status=DatabaseStatus.SKIPPED)

                tasks = generate_tasks(indexes, concurrently=self.config.concurrently)
                state = RunState(database=database, total=len(tasks))
                self.run_logger.milestone(
                    f"Rebuilding {state.total} indexes in {database} with {self.config.workers} workers"
                )

                pool = WorkerPool(
                    handle,
                    database=database,
                    workers=self.config.workers,
                    queue_capacity=self.config.queue_capacity,
                    cancel_token=self.cancel_token,
                )

                with ProgressReporter(
                    state, console=self.console, disable=not self.show_progress
                ) as reporter:
                    try:
                        self.aggregator.drain(pool.run(tasks), state, reporter)
                    except KeyboardInterrupt:
                        # The pool drained before re-raising, so the state is complete
                        self.cancel_token.cancel("interrupted")

                logger.debug(f"Connection pool for {database}: {handle.pool_status()}")

        except (DatabaseConnectionError, DiscoveryError) as e:
            if self.config.on_database_error != "skip":
                raise
            self.run_logger.fatal(f"Skipping database {database}: {e}")
            self.console.print(f"Skipping database {database}: {e}", markup=False, highlight=False)
            return DatabaseSummary(database=database, status=DatabaseStatus.FAILED, error=str(e))

        duration = time.perf_counter() - started
        if state.cancelled or self.cancel_token.is_cancelled:
            return DatabaseSummary.from_state(
                state, duration, DatabaseStatus.CANCELLED, peak_workers=pool.peak_active
            )

        self._milestone(f"database {database} complete")
        return DatabaseSummary.from_state(state, duration, peak_workers=pool.peak_active)
