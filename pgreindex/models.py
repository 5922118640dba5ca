"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Data model for a reindex run.

Descriptors, tasks and outcome records are immutable once created. RunState is
the only mutable value; it belongs to the orchestrator and lives for the
processing of a single database.
"""

from dataclasses import dataclass, field
from enum import Enum


def quote_identifier(name: str) -> str:
    """Quote an identifier unconditionally, doubling embedded double quotes."""
    return '"' + name.replace('"', '""') + '"'


@dataclass(frozen=True)
class IndexDescriptor:
    """Schema-qualified index discovered in one database."""

    schema_name: str
    index_name: str

    @property
    def qualified_name(self) -> str:
        """Readable name for display; not unique when identifiers contain dots."""
        return f"{self.schema_name}.{self.index_name}"

    @property
    def quoted_name(self) -> str:
        """Unambiguous quoted form, as written in SQL."""
        return f"{quote_identifier(self.schema_name)}.{quote_identifier(self.index_name)}"


@dataclass(frozen=True)
class MaintenanceTask:
    """A rebuild statement bound to exactly one index."""

    descriptor: IndexDescriptor
    statement: str

    @property
    def task_id(self) -> str:
        return self.descriptor.quoted_name


@dataclass(frozen=True)
class OutcomeRecord:
    """
    Result of one task execution.

    Attributes:
        worker_id: Worker that claimed the task (0 when it was never claimed)
        database: Database the task ran against
        task_id: Qualified name of the rebuilt index
        statement: Statement that was executed
        success: Whether the statement completed
        error: Error detail for failed or cancelled tasks
        duration: Elapsed execution time in seconds
        cancelled: True when the run was cancelled before the task started
    """

    worker_id: int
    database: str
    task_id: str
    statement: str
    success: bool
    error: str | None = None
    duration: float = 0.0
    cancelled: bool = False

    def describe(self) -> str:
        """One-line rendering used for the run log."""
        if self.success:
            return (
                f"Worker {self.worker_id}: database: {self.database}, "
                f"Successfully executed: {self.statement} (Duration: {self.duration:.3f}s)"
            )
        if self.cancelled:
            return f"Worker {self.worker_id}: database: {self.database}, Cancelled: {self.statement}"
        return (
            f"Worker {self.worker_id}: database: {self.database}, "
            f"Error executing: {self.statement}: {self.error} (Duration: {self.duration:.3f}s)"
        )


@dataclass
class RunState:
    """Counters for the database currently being processed."""

    database: str
    total: int
    completed: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0

    def record(self, outcome: OutcomeRecord) -> None:
        self.completed += 1
        if outcome.success:
            self.succeeded += 1
        elif outcome.cancelled:
            self.cancelled += 1
        else:
            self.failed += 1

    @property
    def is_drained(self) -> bool:
        return self.completed == self.total


class DatabaseStatus(str, Enum):
    """Final status of one database in a run."""

    COMPLETED = "completed"  # Every task produced an outcome
    SKIPPED = "skipped"  # No user indexes were found
    FAILED = "failed"  # Connection or discovery failed and the run was configured to skip it
    CANCELLED = "cancelled"  # The run was interrupted while this database was processing


@dataclass
class DatabaseSummary:
    """What happened to one database."""

    database: str
    status: DatabaseStatus
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    duration: float = 0.0
    error: str | None = None
    peak_workers: int = 0  # Most statements seen in flight at once

    @classmethod
    def from_state(
        cls,
        state: RunState,
        duration: float,
        status: DatabaseStatus = DatabaseStatus.COMPLETED,
        peak_workers: int = 0,
    ) -> "DatabaseSummary":
        return cls(
            database=state.database,
            status=status,
            total=state.total,
            succeeded=state.succeeded,
            failed=state.failed,
            cancelled=state.cancelled,
            duration=duration,
            peak_workers=peak_workers,
        )


@dataclass
class RunSummary:
    """Aggregate result of a whole run."""

    databases: list[DatabaseSummary] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total_tasks(self) -> int:
        return sum(db.total for db in self.databases)

    @property
    def failed_tasks(self) -> int:
        return sum(db.failed for db in self.databases)

    def get(self, database: str) -> DatabaseSummary | None:
        for summary in self.databases:
            if summary.database == database:
                return summary
        return None
