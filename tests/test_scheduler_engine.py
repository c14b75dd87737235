"""Tests for SchedulerEngine — ticks, leases, manual runs and the timer."""

import asyncio
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from vigil.scheduler.configs import TaskType
from vigil.scheduler.engine import SchedulerEngine
from vigil.scheduler.errors import (
    StoreError,
    TaskInactiveError,
    TaskLeasedError,
    TaskNotFoundError,
)
from vigil.scheduler.executor import TaskExecutor
from vigil.scheduler.handlers import HandlerRegistry, HandlerResult
from vigil.scheduler.history import HistoryLog
from vigil.scheduler.models import Task, TaskStatus
from vigil.scheduler.rescheduler import Rescheduler
from vigil.scheduler.service import TaskService
from vigil.scheduler.store import TaskStore

from .conftest import T0, FakeClock

pytestmark = pytest.mark.usefixtures("_no_turso")


@pytest.fixture
def engine(
    store: TaskStore, history: HistoryLog, registry: HandlerRegistry, clock: FakeClock
) -> SchedulerEngine:
    executor = TaskExecutor(history=history, registry=registry, timeout=5, clock=clock)
    rescheduler = Rescheduler(store, clock=clock)
    return SchedulerEngine(
        store=store,
        executor=executor,
        rescheduler=rescheduler,
        max_parallel=2,
        tick_interval=1,
        clock=clock,
    )


def _make_task(task_id: str = "task1", **kwargs) -> Task:
    defaults = {
        "owner_id": "alice",
        "name": f"Scan {task_id}",
        "type": TaskType.SECURITY_SCAN,
        "frequency": "Every 5 minutes",
        "config": {"urls": ["https://example.com"]},
        "last_run": T0 - timedelta(minutes=5),
        "next_run": T0,
        "created_at": T0 - timedelta(hours=1),
    }
    defaults.update(kwargs)
    return Task(id=task_id, **defaults)


def _ok(**kwargs):
    return AsyncMock(return_value=HandlerResult(success=True, message="clean", **kwargs))


# -- Lifecycle -----------------------------------------------------------------


async def test_start_and_stop(engine: SchedulerEngine) -> None:
    await engine.start()
    assert engine.running is True
    assert engine._scheduler.get_job("vigil-tick") is not None

    await engine.stop()
    assert engine.running is False


async def test_start_twice_is_noop(engine: SchedulerEngine) -> None:
    await engine.start()
    try:
        await engine.start()
        assert len(engine._scheduler.get_jobs()) == 1
    finally:
        await engine.stop()


async def test_timer_tick_swallows_store_error(engine: SchedulerEngine) -> None:
    with patch.object(engine, "run_due_tasks", AsyncMock(side_effect=StoreError("down"))):
        await engine._timer_tick()


# -- Ticks ---------------------------------------------------------------------


async def test_empty_tick(engine: SchedulerEngine) -> None:
    summary = await engine.run_due_tasks()
    assert (summary.attempted, summary.succeeded, summary.failed, summary.skipped) == (
        0,
        0,
        0,
        0,
    )
    assert summary.started_at == T0


async def test_runs_only_due_tasks(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    handler = _ok()
    registry.register(TaskType.SECURITY_SCAN, handler)
    await store.add_task(_make_task("due"))
    await store.add_task(_make_task("later", next_run=T0 + timedelta(minutes=1)))
    await store.add_task(_make_task("paused", status=TaskStatus.PAUSED))

    summary = await engine.run_due_tasks()

    assert summary.attempted == 1
    assert summary.succeeded == 1
    assert handler.await_count == 1
    updated = await store.get_task("alice", "due")
    assert updated.last_run == T0
    assert updated.next_run == T0 + timedelta(minutes=5)
    assert updated.execution_count == 1


async def test_failure_isolation(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry, history: HistoryLog
) -> None:
    async def scan(config):
        if "https://bad.example" in config.urls:
            raise RuntimeError("scanner crashed")
        return HandlerResult(success=True, message="clean")

    registry.register(TaskType.SECURITY_SCAN, scan)
    await store.add_task(_make_task("good"))
    await store.add_task(_make_task("bad", config={"urls": ["https://bad.example"]}))

    summary = await engine.run_due_tasks()

    assert summary.attempted == 2
    assert summary.succeeded == 1
    assert summary.failed == 1

    good = await store.get_task("alice", "good")
    bad = await store.get_task("alice", "bad")
    assert good.success_count == 1
    assert bad.failure_count == 1
    assert bad.status is TaskStatus.ACTIVE
    assert bad.last_result.error == "scanner crashed"
    assert bad.next_run == T0 + timedelta(minutes=5)
    assert len(await history.list("alice", "bad")) == 1


async def test_parallelism_is_bounded(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    in_flight = 0
    peak = 0

    async def scan(config):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return HandlerResult(success=True)

    registry.register(TaskType.SECURITY_SCAN, scan)
    for n in range(5):
        await store.add_task(_make_task(f"t{n}"))

    summary = await engine.run_due_tasks()

    assert summary.succeeded == 5
    assert peak <= 2


async def test_lease_prevents_overlapping_runs(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    calls = 0

    async def scan(config):
        nonlocal calls
        calls += 1
        started.set()
        await release.wait()
        return HandlerResult(success=True)

    registry.register(TaskType.SECURITY_SCAN, scan)
    await store.add_task(_make_task())

    first = asyncio.create_task(engine.run_due_tasks())
    await started.wait()
    assert engine.leases.held(("alice", "task1"))

    second = await engine.run_due_tasks()
    assert second.skipped == 1
    assert second.attempted == 0

    release.set()
    summary = await first
    assert summary.succeeded == 1
    assert calls == 1
    assert len(engine.leases) == 0


async def test_duplicate_cron_delivery_runs_once(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    handler = _ok()
    registry.register(TaskType.SECURITY_SCAN, handler)
    await store.add_task(_make_task())

    first = await engine.run_due_tasks()
    second = await engine.run_due_tasks()

    assert first.succeeded == 1
    assert second.attempted == 0
    assert handler.await_count == 1


async def test_stale_due_entry_is_skipped(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    handler = _ok()
    registry.register(TaskType.SECURITY_SCAN, handler)
    task = _make_task()
    await store.add_task(task)

    # Another trigger ran the task after this tick fetched its due set.
    real_list = store.list_due_tasks

    async def stale_list(now):
        due = await real_list(now)
        await store.save_task(replace(task, last_run=T0 - timedelta(seconds=30)))
        return due

    with patch.object(store, "list_due_tasks", stale_list):
        summary = await engine.run_due_tasks()

    assert summary.skipped == 1
    assert handler.await_count == 0


async def test_continuous_task_runs_every_tick(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry, clock: FakeClock
) -> None:
    handler = _ok()
    registry.register(TaskType.SECURITY_SCAN, handler)
    await store.add_task(_make_task(frequency="Real-time", next_run=None))

    await engine.run_due_tasks()
    clock.advance(timedelta(seconds=30))
    await engine.run_due_tasks()

    assert handler.await_count == 2
    task = await store.get_task("alice", "task1")
    assert task.next_run is None
    assert task.execution_count == 2


async def test_store_failure_aborts_tick(engine: SchedulerEngine, store: TaskStore) -> None:
    with (
        patch.object(store, "list_due_tasks", AsyncMock(side_effect=StoreError("down"))),
        pytest.raises(StoreError),
    ):
        await engine.run_due_tasks()


async def test_reschedule_failure_still_counts_attempt(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    registry.register(TaskType.SECURITY_SCAN, _ok())
    await store.add_task(_make_task())

    with patch.object(store, "save_task", AsyncMock(side_effect=StoreError("down"))):
        summary = await engine.run_due_tasks()

    assert summary.attempted == 1
    assert summary.succeeded == 1
    assert len(engine.leases) == 0


async def test_every_success_in_a_tick_is_persisted(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry, history: HistoryLog
) -> None:
    registry.register(TaskType.SECURITY_SCAN, _ok())
    ids = [f"t{n}" for n in range(6)]
    for task_id in ids:
        await store.add_task(_make_task(task_id))

    summary = await engine.run_due_tasks()

    assert summary.succeeded == len(ids)
    for task_id in ids:
        task = await store.get_task("alice", task_id)
        assert task.execution_count == 1
        assert task.next_run == T0 + timedelta(minutes=5)
        assert len(await history.list("alice", task_id)) == 1


async def test_non_json_handler_data_does_not_abort_tick(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    registry.register(
        TaskType.PRICE_ALERT,
        AsyncMock(return_value={"success": True, "data": {"price": Decimal("150.25")}}),
    )
    registry.register(TaskType.SECURITY_SCAN, _ok())
    await store.add_task(
        _make_task(
            "price",
            type=TaskType.PRICE_ALERT,
            config={"tokenMint": "mint1", "priceThreshold": {"above": 200}},
        )
    )
    await store.add_task(_make_task("scan"))

    summary = await engine.run_due_tasks()

    assert summary.succeeded == 2
    price = await store.get_task("alice", "price")
    scan = await store.get_task("alice", "scan")
    assert price.execution_count == 1
    assert price.last_result.data == {"price": "150.25"}
    assert scan.execution_count == 1


async def test_unexpected_reschedule_error_is_contained(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry
) -> None:
    registry.register(TaskType.SECURITY_SCAN, _ok())
    await store.add_task(_make_task())

    with patch.object(
        engine._rescheduler, "reschedule", AsyncMock(side_effect=RuntimeError("boom"))
    ):
        summary = await engine.run_due_tasks()

    assert summary.attempted == 1
    assert len(engine.leases) == 0


async def test_pause_during_tick_keeps_run_outcome(
    engine: SchedulerEngine, store: TaskStore, history: HistoryLog, registry: HandlerRegistry
) -> None:
    registry.register(TaskType.SECURITY_SCAN, _ok())
    await store.add_task(_make_task())
    service = TaskService(store, history, engine, clock=engine._clock)

    # The pause reads the task, then writes only after the tick has rescheduled it.
    pause_read = asyncio.Event()
    tick_done = asyncio.Event()
    real_save = store.save_task

    async def save_after_tick(task, fields=None):
        if task.status is TaskStatus.PAUSED:
            pause_read.set()
            await tick_done.wait()
        return await real_save(task, fields=fields)

    with patch.object(store, "save_task", save_after_tick):
        pausing = asyncio.create_task(service.toggle("alice", "task1"))
        await pause_read.wait()
        summary = await engine.run_due_tasks()
        tick_done.set()
        paused = await pausing

    assert summary.succeeded == 1
    assert paused.status is TaskStatus.PAUSED
    assert paused.execution_count == 1
    assert paused.last_run == T0
    assert paused.next_run == T0 + timedelta(minutes=5)


def test_max_parallel_must_be_positive(
    store: TaskStore, history: HistoryLog, registry: HandlerRegistry
) -> None:
    executor = TaskExecutor(history=history, registry=registry)
    with pytest.raises(ValueError, match="max_parallel"):
        SchedulerEngine(store, executor, Rescheduler(store), max_parallel=0)


# -- End-to-end scenario -------------------------------------------------------


async def test_created_task_runs_when_due(
    store: TaskStore,
    history: HistoryLog,
    registry: HandlerRegistry,
    engine: SchedulerEngine,
    clock: FakeClock,
) -> None:
    handler = AsyncMock(
        return_value=HandlerResult(success=True, message="Price 150", data={"alert": False})
    )
    registry.register(TaskType.PRICE_ALERT, handler)
    service = TaskService(store, history, engine, clock=clock)

    task = await service.create(
        "alice",
        "SOL above 200",
        "price-alert",
        "Every 5 minutes",
        {"tokenMint": "So11111111111111111111111111111111111111112",
         "priceThreshold": {"above": 200}},
    )
    assert task.next_run == T0 + timedelta(minutes=5)

    clock.advance(timedelta(minutes=4))
    early = await engine.run_due_tasks()
    assert early.attempted == 0

    clock.advance(timedelta(minutes=1))
    summary = await engine.run_due_tasks()
    assert summary.attempted == 1
    assert summary.succeeded == 1

    updated = await service.get("alice", task.id)
    assert updated.last_run == T0 + timedelta(minutes=5)
    assert updated.next_run == T0 + timedelta(minutes=10)
    assert updated.execution_count == 1
    assert updated.success_rate == 100
    assert updated.last_result.message == "Price 150"
    assert [r.success for r in await service.history("alice", task.id)] == [True]


# -- Manual runs ---------------------------------------------------------------


async def test_run_task_ignores_due_time(
    engine: SchedulerEngine, store: TaskStore, registry: HandlerRegistry, clock: FakeClock
) -> None:
    handler = _ok()
    registry.register(TaskType.SECURITY_SCAN, handler)
    await store.add_task(_make_task(next_run=T0 + timedelta(days=1)))

    record = await engine.run_task("alice", "task1")

    assert record.success is True
    updated = await store.get_task("alice", "task1")
    assert updated.last_run == T0
    assert updated.next_run == T0 + timedelta(minutes=5)


async def test_run_task_not_found(engine: SchedulerEngine) -> None:
    with pytest.raises(TaskNotFoundError):
        await engine.run_task("alice", "ghost")


async def test_run_task_wrong_owner(engine: SchedulerEngine, store: TaskStore) -> None:
    await store.add_task(_make_task())
    with pytest.raises(TaskNotFoundError):
        await engine.run_task("bob", "task1")


async def test_run_task_inactive(engine: SchedulerEngine, store: TaskStore) -> None:
    await store.add_task(_make_task(status=TaskStatus.PAUSED))
    with pytest.raises(TaskInactiveError):
        await engine.run_task("alice", "task1")


async def test_run_task_already_leased(
    engine: SchedulerEngine, store: TaskStore, clock: FakeClock
) -> None:
    await store.add_task(_make_task())
    engine.leases.acquire(("alice", "task1"), clock())
    with pytest.raises(TaskLeasedError):
        await engine.run_task("alice", "task1")


# -- Status --------------------------------------------------------------------


async def test_status(engine: SchedulerEngine, store: TaskStore) -> None:
    await store.add_task(_make_task("due"))
    await store.add_task(_make_task("soon", next_run=T0 + timedelta(minutes=2)))
    await store.add_task(_make_task("later", next_run=T0 + timedelta(hours=2)))
    await store.add_task(_make_task("paused", status=TaskStatus.PAUSED))

    status = await engine.status()

    assert status["running"] is False
    assert status["activeTasks"] == 3
    assert status["dueTasks"] == 1
    assert status["inFlight"] == 0
    assert status["nextExecution"] == "2025-06-01T09:02:00.000000+00:00"
    assert [t["id"] for t in status["upcomingTasks"]] == ["soon", "later"]
