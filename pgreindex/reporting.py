"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Outcome aggregation, progress display and the durable run log.
"""

import logging
from collections.abc import Iterable

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from pgreindex.core.logging import RUN_LOGGER_NAME
from pgreindex.exceptions import AggregationError
from pgreindex.models import OutcomeRecord, RunState

logger = logging.getLogger(__name__)


class RunLogger:
    """Append-only record of every outcome and run milestone."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logging.getLogger(RUN_LOGGER_NAME)

    def record(self, outcome: OutcomeRecord) -> None:
        if outcome.success:
            self.log.info(outcome.describe())
        elif outcome.cancelled:
            self.log.warning(outcome.describe())
        else:
            self.log.error(outcome.describe())

    def milestone(self, message: str) -> None:
        self.log.info(message)

    def fatal(self, message: str) -> None:
        self.log.critical(message)


class ProgressReporter:
    """
    Progress bar for one database, sized to its task count before work starts.
    """

    def __init__(self, state: RunState, console: Console | None = None, disable: bool = False):
        self.state = state
        self.completed = 0
        self._progress = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            disable=disable,
        )
        self._task_id = self._progress.add_task(state.database, total=state.total)

    def __enter__(self) -> "ProgressReporter":
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.stop()

    def advance(self) -> None:
        self.completed += 1
        self._progress.update(self._task_id, completed=self.completed)


class ResultAggregator:
    """
    Consumes outcome records until the sink closes.
    """

    def __init__(self, run_logger: RunLogger):
        self.run_logger = run_logger

    def drain(
        self,
        outcomes: Iterable[OutcomeRecord],
        state: RunState,
        reporter: ProgressReporter | None = None,
    ) -> RunState:
        """
        Persist every outcome, update the run state and advance progress.

        Args:
            outcomes: Outcome records; iteration ends when the sink closes
            state: Run state of the database being processed
            reporter: Progress display, if any

        Returns:
            The updated run state

        Raises:
            AggregationError: If an outcome is duplicated, or the outcome count
                does not match the task count once the sink closes
        """
        seen: set[str] = set()
        for outcome in outcomes:
            if outcome.task_id in seen:
                raise AggregationError(
                    f"Duplicate outcome for {outcome.task_id} in database {state.database}"
                )
            seen.add(outcome.task_id)

            self.run_logger.record(outcome)
            state.record(outcome)
            if reporter is not None:
                reporter.advance()

        if not state.is_drained:
            raise AggregationError(
                f"Database {state.database}: expected {state.total} outcomes, got {state.completed}"
            )
        if reporter is not None and reporter.completed != state.total:
            raise AggregationError(
                f"Database {state.database}: progress reached {reporter.completed} of {state.total}"
            )

        logger.debug(
            f"Drained {state.completed} outcomes for {state.database} "
            f"({state.succeeded} succeeded, {state.failed} failed, {state.cancelled} cancelled)"
        )
        return state
