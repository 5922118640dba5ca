"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for the worker pool module.
"""

import queue
import threading

import pytest

from pgreindex.models import IndexDescriptor
from pgreindex.tasks import generate_tasks
from pgreindex.work_queue import CancellationToken, PoolState, TaskSource, WorkerPool
from tests.fixtures.database import FakeDatabaseHandle

# Mark the whole module as unit tests
pytestmark = pytest.mark.unit


def make_tasks(count: int, schema: str = "public"):
    """Tasks for idx_0 .. idx_{count-1}."""
    return generate_tasks(IndexDescriptor(schema, f"idx_{i}") for i in range(count))


class BlockingHandle:
    """Handle whose first statement waits until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.executed = []

    def execute(self, statement: str) -> None:
        self.executed.append(statement)
        self.started.set()
        self.release.wait(timeout=5)


def test_every_task_yields_one_outcome():
    """Test no outcome is lost or duplicated."""
    handle = FakeDatabaseHandle("app1")
    tasks = make_tasks(25)
    pool = WorkerPool(handle, database="app1", workers=4)

    outcomes = list(pool.run(tasks))

    assert len(outcomes) == len(tasks)
    assert sorted(o.task_id for o in outcomes) == sorted(t.task_id for t in tasks)
    assert sorted(handle.executed) == sorted(t.statement for t in tasks)
    assert all(o.success and o.error is None for o in outcomes)
    assert all(o.database == "app1" for o in outcomes)
    assert {o.worker_id for o in outcomes} <= set(range(1, 5))
    assert pool.state == PoolState.COMPLETE


def test_concurrency_never_exceeds_worker_count():
    """Test in-flight executions are bounded by the number of workers."""
    handle = FakeDatabaseHandle("app1", delay=0.02)
    pool = WorkerPool(handle, database="app1", workers=3)

    outcomes = list(pool.run(make_tasks(30)))

    assert len(outcomes) == 30
    assert 1 <= handle.peak_active <= 3
    assert 1 <= pool.peak_active <= 3
    assert pool.active == 0


def test_single_worker_runs_serially():
    """Test one worker executes one statement at a time."""
    handle = FakeDatabaseHandle("app1", delay=0.005)
    pool = WorkerPool(handle, database="app1", workers=1)

    outcomes = list(pool.run(make_tasks(5)))

    assert len(outcomes) == 5
    assert handle.peak_active == 1
    assert {o.worker_id for o in outcomes} == {1}


def test_failing_task_does_not_stop_the_others():
    """Test a failure is captured in its own outcome and the run continues."""
    tasks = make_tasks(6)
    failing = tasks[2]
    handle = FakeDatabaseHandle(
        "app1", failures={failing.statement: RuntimeError("could not obtain lock on relation")}
    )
    pool = WorkerPool(handle, database="app1", workers=2)

    outcomes = {o.task_id: o for o in pool.run(tasks)}

    assert len(outcomes) == 6
    failed = outcomes[failing.task_id]
    assert failed.success is False
    assert "could not obtain lock" in failed.error
    assert failed.cancelled is False
    others = [o for task_id, o in outcomes.items() if task_id != failing.task_id]
    assert all(o.success for o in others)
    assert all(o.error is None for o in others)
    assert len(handle.executed) == 6


def test_more_workers_than_tasks():
    """Test idle workers exit cleanly when the source is drained."""
    handle = FakeDatabaseHandle("app1")
    pool = WorkerPool(handle, database="app1", workers=10)

    outcomes = list(pool.run(make_tasks(2)))

    assert len(outcomes) == 2
    assert pool.state == PoolState.COMPLETE


def test_cancelled_before_start_reports_every_task():
    """Test a cancelled token still yields one outcome per task and runs nothing."""
    handle = FakeDatabaseHandle("app1")
    token = CancellationToken()
    token.cancel("shutdown requested")
    pool = WorkerPool(handle, database="app1", workers=3, cancel_token=token)

    outcomes = list(pool.run(make_tasks(7)))

    assert len(outcomes) == 7
    assert all(o.cancelled and not o.success for o in outcomes)
    assert all(o.error == "shutdown requested" for o in outcomes)
    assert handle.executed == []


def test_cancel_during_run_lets_in_flight_finish():
    """Test cancellation does not interrupt a running statement."""
    handle = BlockingHandle()
    token = CancellationToken()
    tasks = make_tasks(5)
    pool = WorkerPool(handle, database="app1", workers=1, cancel_token=token)

    outcomes = []

    def consume():
        outcomes.extend(pool.run(tasks))

    consumer = threading.Thread(target=consume)
    consumer.start()
    assert handle.started.wait(timeout=5)
    token.cancel("stop")
    handle.release.set()
    consumer.join(timeout=5)

    assert len(outcomes) == 5
    assert len(handle.executed) == 1
    assert sum(1 for o in outcomes if o.success) == 1
    assert sum(1 for o in outcomes if o.cancelled) == 4


def test_bounded_task_source_delivers_everything():
    """Test a task source smaller than the task list applies backpressure without loss."""
    handle = FakeDatabaseHandle("app1", delay=0.001)
    pool = WorkerPool(handle, database="app1", workers=2, queue_capacity=3)

    outcomes = list(pool.run(make_tasks(20)))

    assert len(outcomes) == 20
    assert len({o.task_id for o in outcomes}) == 20


def test_bounded_task_source_cancelled_reports_unsent_tasks():
    """Test tasks the producer never sent are reported as cancelled."""
    handle = FakeDatabaseHandle("app1")
    token = CancellationToken()
    token.cancel()
    pool = WorkerPool(handle, database="app1", workers=2, queue_capacity=2, cancel_token=token)

    outcomes = list(pool.run(make_tasks(10)))

    assert len(outcomes) == 10
    assert all(o.cancelled for o in outcomes)


def test_pool_runs_only_once():
    """Test a pool is bound to a single database run."""
    pool = WorkerPool(FakeDatabaseHandle("app1"), database="app1", workers=1)
    list(pool.run(make_tasks(1)))

    with pytest.raises(RuntimeError):
        list(pool.run(make_tasks(1)))


def test_invalid_worker_count():
    """Test at least one worker is required."""
    with pytest.raises(ValueError):
        WorkerPool(FakeDatabaseHandle("app1"), database="app1", workers=0)


class TestTaskSource:
    """Tests for the shared task source."""

    def test_claim_until_closed(self):
        """Test every worker sees the end of a closed, drained source."""
        source = TaskSource()
        tasks = make_tasks(2)
        for task in tasks:
            source.put(task)
        source.close()

        assert source.claim() == tasks[0]
        assert source.claim() == tasks[1]
        assert source.claim() is None
        assert source.claim() is None

    def test_put_after_close(self):
        """Test a closed source accepts no more tasks."""
        source = TaskSource()
        source.close()
        assert source.closed
        with pytest.raises(RuntimeError):
            source.put(make_tasks(1)[0])

    def test_put_gives_up_when_cancelled(self):
        """Test a full bounded source does not block a cancelled producer."""
        source = TaskSource(capacity=1)
        token = CancellationToken()
        first, second = make_tasks(2)

        assert source.put(first, token)
        token.cancel()
        assert source.put(second, token) is False


def test_interrupt_while_reading_outcomes_still_drains(monkeypatch):
    """Test Ctrl-C in the consumer cancels, drains every outcome, then re-raises."""
    handle = FakeDatabaseHandle("app1", delay=0.01)
    tasks = make_tasks(8)
    pool = WorkerPool(handle, database="app1", workers=2)

    consumer = threading.get_ident()
    original_get = queue.Queue.get
    interrupted = []

    def get(self, *args, **kwargs):
        if threading.get_ident() == consumer and not interrupted:
            interrupted.append(True)
            raise KeyboardInterrupt
        return original_get(self, *args, **kwargs)

    monkeypatch.setattr(queue.Queue, "get", get)

    outcomes = []
    with pytest.raises(KeyboardInterrupt):
        for outcome in pool.run(tasks):
            outcomes.append(outcome)

    assert interrupted
    assert len(outcomes) == len(tasks)
    assert {o.task_id for o in outcomes} == {t.task_id for t in tasks}
    assert pool.cancel_token.reason == "interrupted"
    assert pool.state == PoolState.COMPLETE
    assert any(o.cancelled for o in outcomes)
    assert len(handle.executed) == sum(1 for o in outcomes if o.success)
