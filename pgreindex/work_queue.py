"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Bounded worker pool for rebuild statements.

A fixed number of worker threads pull maintenance tasks from a shared task
source and execute them one at a time against the database's connection pool.
Every claimed task yields exactly one outcome record, whether the statement
succeeded, failed, or was skipped because the run was cancelled. The outcome
sink is closed by a supervisor only after every worker has exited, which only
happens after the task source is exhausted.
"""

import logging
import queue
import threading
import time
from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Optional, Protocol

from pgreindex.exceptions import TaskExecutionError
from pgreindex.models import MaintenanceTask, OutcomeRecord

logger = logging.getLogger("pgreindex.work_queue")

# How often a blocked producer re-checks for cancellation (seconds)
_PUT_POLL_INTERVAL = 0.1


class StatementExecutor(Protocol):
    """Anything that can run one statement; DatabaseHandle in production."""

    def execute(self, statement: str) -> None: ...


class PoolState(str, Enum):
    """Lifecycle of one worker pool run."""

    IDLE = "idle"  # Nothing dispatched yet
    DISPATCHING = "dispatching"  # Task source is being filled
    DRAINING = "draining"  # Workers are consuming the task source
    COMPLETE = "complete"  # All workers exited and the outcome sink is closed


class CancellationToken:
    """
    Cooperative cancellation shared by the orchestrator and the workers.

    Setting the token never interrupts a running statement; workers stop
    executing new tasks and report the remaining ones as cancelled.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.warning(f"Cancellation requested: {reason}")

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class _Closed:
    """Marker placed in a queue once no more items will follow."""

    def __repr__(self) -> str:
        return "<closed>"


_CLOSED = _Closed()


class TaskSource:
    """
    Shared source of maintenance tasks, closed once fully populated.

    With capacity 0 the source is unbounded and is filled up front; with a
    positive capacity put() blocks until a worker makes room.
    """

    def __init__(self, capacity: int = 0):
        self.capacity = capacity
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, task: MaintenanceTask, cancel_token: Optional[CancellationToken] = None) -> bool:
        """
        Add a task, waiting for room when the source is bounded.

        Returns:
            False if the token was cancelled before the task could be added
        """
        if self._closed:
            raise RuntimeError("Cannot add tasks to a closed task source")
        while True:
            if cancel_token is not None and cancel_token.is_cancelled:
                return False
            try:
                self._queue.put(task, timeout=_PUT_POLL_INTERVAL)
                return True
            except queue.Full:
                continue

    def close(self) -> None:
        """Signal that no more tasks will be added."""
        if not self._closed:
            self._closed = True
            self._queue.put(_CLOSED)

    def claim(self) -> Optional[MaintenanceTask]:
        """
        Take the next task, blocking until one is available.

        Returns:
            The task, or None once the source is closed and empty
        """
        item = self._queue.get()
        if item is _CLOSED:
            # Put the marker back so every other worker sees it too
            self._queue.put(_CLOSED)
            return None
        return item


class WorkerPool:
    """
    Runs the maintenance tasks of one database with a fixed number of workers.
    """

    def __init__(
        self,
        executor: StatementExecutor,
        database: str,
        workers: int = 10,
        queue_capacity: int = 0,
        cancel_token: Optional[CancellationToken] = None,
    ):
        """
        Initialize the worker pool.

        Args:
            executor: Shared handle the statements run against
            database: Database name recorded in outcome records
            workers: Number of concurrent workers
            queue_capacity: Task source capacity (0 sizes it to the task count)
            cancel_token: Token checked by workers before each task
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")

        self.executor = executor
        self.database = database
        self.workers = workers
        self.queue_capacity = queue_capacity
        self.cancel_token = cancel_token or CancellationToken()
        self.state = PoolState.IDLE

        # Instrumentation, guarded by _active_lock
        self._active_lock = threading.Lock()
        self.active = 0
        self.peak_active = 0

    def _execute(self, worker_id: int, task: MaintenanceTask) -> OutcomeRecord:
        """Run one task and turn the result into an outcome record."""
        with self._active_lock:
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)

        start = time.perf_counter()
        try:
            self.executor.execute(task.statement)
        except Exception as e:
            duration = time.perf_counter() - start
            error = TaskExecutionError(task.task_id, task.statement, e)
            logger.debug(f"Worker {worker_id}: {error}")
            return OutcomeRecord(
                worker_id=worker_id,
                database=self.database,
                task_id=task.task_id,
                statement=task.statement,
                success=False,
                error=str(e),
                duration=duration,
            )
        finally:
            with self._active_lock:
                self.active -= 1

        return OutcomeRecord(
            worker_id=worker_id,
            database=self.database,
            task_id=task.task_id,
            statement=task.statement,
            success=True,
            duration=time.perf_counter() - start,
        )

    def _cancelled(self, worker_id: int, task: MaintenanceTask) -> OutcomeRecord:
        return OutcomeRecord(
            worker_id=worker_id,
            database=self.database,
            task_id=task.task_id,
            statement=task.statement,
            success=False,
            error=self.cancel_token.reason or "cancelled",
            cancelled=True,
        )

    def _worker(self, worker_id: int, source: TaskSource, outcomes: queue.Queue) -> None:
        """Claim and execute tasks until the source is closed and empty."""
        processed = 0
        while True:
            task = source.claim()
            if task is None:
                break
            if self.cancel_token.is_cancelled:
                outcomes.put(self._cancelled(worker_id, task))
            else:
                outcomes.put(self._execute(worker_id, task))
            processed += 1
        logger.debug(f"Worker {worker_id} on {self.database} exiting after {processed} tasks")

    def _produce(self, tasks: Sequence[MaintenanceTask], source: TaskSource, outcomes: queue.Queue) -> None:
        """Feed a bounded task source; unsent tasks are reported as cancelled."""
        try:
            for index, task in enumerate(tasks):
                if not source.put(task, self.cancel_token):
                    for unsent in tasks[index:]:
                        outcomes.put(self._cancelled(0, unsent))
                    break
        finally:
            source.close()

    def run(self, tasks: Sequence[MaintenanceTask]) -> Iterator[OutcomeRecord]:
        """
        Execute every task and yield outcome records as they complete.

        Outcomes arrive in completion order. The iterator ends only after
        every worker has exited.

        Args:
            tasks: Tasks of one database

        Yields:
            One OutcomeRecord per task
        """
        if self.state != PoolState.IDLE:
            raise RuntimeError(f"Worker pool for {self.database} has already run")

        self.state = PoolState.DISPATCHING
        bounded = 0 < self.queue_capacity < len(tasks)
        source = TaskSource(self.queue_capacity if bounded else 0)
        outcomes: queue.Queue = queue.Queue()

        producer = None
        if bounded:
            producer = threading.Thread(
                target=self._produce,
                args=(tasks, source, outcomes),
                name=f"reindex-producer-{self.database}",
                daemon=True,
            )
            producer.start()
        else:
            for task in tasks:
                source.put(task)
            source.close()

        self.state = PoolState.DRAINING
        pool = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix=f"reindex-{self.database}"
        )
        futures = [
            pool.submit(self._worker, worker_id, source, outcomes)
            for worker_id in range(1, self.workers + 1)
        ]
        logger.debug(f"Started {self.workers} workers for {len(tasks)} tasks on {self.database}")

        def supervise() -> None:
            wait(futures)
            if producer is not None:
                producer.join()
            for future in futures:
                if future.exception() is not None:
                    logger.error(f"Worker on {self.database} died: {future.exception()}")
            self.state = PoolState.COMPLETE
            outcomes.put(_CLOSED)

        supervisor = threading.Thread(
            target=supervise, name=f"reindex-supervisor-{self.database}", daemon=True
        )
        supervisor.start()

        interrupted: Optional[KeyboardInterrupt] = None
        try:
            while True:
                try:
                    item = outcomes.get()
                except KeyboardInterrupt as e:
                    # Let in-flight statements finish and report the rest as cancelled
                    self.cancel_token.cancel("interrupted")
                    interrupted = e
                    continue
                if item is _CLOSED:
                    break
                yield item
        finally:
            if self.state != PoolState.COMPLETE:
                self.cancel_token.cancel("outcome consumer stopped")
            pool.shutdown(wait=True)
            supervisor.join()

        if interrupted is not None:
            raise interrupted
