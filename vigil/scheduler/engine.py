"""SchedulerEngine — runs due tasks on each tick, from a timer or a cron call."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vigil.config import settings
from vigil.scheduler.errors import (
    StoreError,
    TaskInactiveError,
    TaskLeasedError,
    TaskNotFoundError,
)
from vigil.scheduler.leases import LeaseMap
from vigil.scheduler.models import TickSummary, to_timestamp, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from vigil.scheduler.executor import TaskExecutor
    from vigil.scheduler.models import ExecutionRecord, Task
    from vigil.scheduler.rescheduler import Rescheduler
    from vigil.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

_TICK_JOB_ID = "vigil-tick"
_UPCOMING_LIMIT = 10


class SchedulerEngine:
    """Drives execution of due tasks.

    ``run_due_tasks`` is the single entry point for both trigger paths: the
    in-process timer started by ``start()`` and the HTTP cron endpoint.  It
    is safe to call concurrently with itself.  A task is dispatched only if
    its lease can be taken *and* a fresh read shows it is still due and has
    not run since the due set was fetched.  That pair is what absorbs
    duplicate at-least-once cron deliveries and overlapping timer ticks.

    Args:
        store: TaskStore holding the tasks.
        executor: TaskExecutor that runs one task.
        rescheduler: Rescheduler that writes outcomes back.
        max_parallel: Worker pool size per tick (default from settings).
        tick_interval: Seconds between timer ticks (default from settings).
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: TaskExecutor,
        rescheduler: Rescheduler,
        max_parallel: int | None = None,
        tick_interval: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._executor = executor
        self._rescheduler = rescheduler
        if max_parallel is None:
            max_parallel = settings.max_parallel_executions
        if max_parallel < 1:
            msg = f"max_parallel must be at least 1, got {max_parallel}"
            raise ValueError(msg)
        self._max_parallel = max_parallel
        self._tick_interval = (
            settings.tick_interval_seconds if tick_interval is None else tick_interval
        )
        self._clock = clock
        self._leases = LeaseMap()
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def leases(self) -> LeaseMap:
        return self._leases

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the in-process timer that ticks every ``tick_interval`` seconds."""
        if self._running:
            return
        self._scheduler.add_job(
            self._timer_tick,
            trigger=IntervalTrigger(seconds=self._tick_interval),
            id=_TICK_JOB_ID,
            name="run due tasks",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started (tick=%ds, workers=%d)",
            self._tick_interval,
            self._max_parallel,
        )

    async def stop(self) -> None:
        """Shut down the timer. In-flight executions are not cancelled."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _timer_tick(self) -> None:
        """Callback invoked by APScheduler."""
        try:
            await self.run_due_tasks()
        except StoreError:
            logger.warning("Timer tick aborted, will retry on the next tick")

    # -- Ticks -----------------------------------------------------------------

    async def run_due_tasks(self, now: datetime | None = None) -> TickSummary:
        """Run one tick: execute every due task and report the counts.

        Raises StoreError if the due set cannot be fetched; nothing has been
        executed in that case.
        """
        now = self._clock() if now is None else now
        summary = TickSummary(started_at=now)

        due = await self._store.list_due_tasks(now)
        if not due:
            logger.debug("Tick at %s: no due tasks", to_timestamp(now))
            return summary
        logger.info("Tick at %s: %d due task(s)", to_timestamp(now), len(due))

        semaphore = asyncio.Semaphore(self._max_parallel)
        records = await asyncio.gather(
            *(self._dispatch(task, now, semaphore) for task in due)
        )

        for record in records:
            if record is None:
                summary.skipped += 1
                continue
            summary.attempted += 1
            if record.success:
                summary.succeeded += 1
            else:
                summary.failed += 1

        logger.info(
            "Tick complete: attempted=%d succeeded=%d failed=%d skipped=%d",
            summary.attempted,
            summary.succeeded,
            summary.failed,
            summary.skipped,
        )
        return summary

    async def _dispatch(
        self, task: Task, now: datetime, semaphore: asyncio.Semaphore
    ) -> ExecutionRecord | None:
        """Lease, re-check, execute and reschedule one task. None means skipped."""
        key = task.key
        # Taken before the first await so every due task is leased up front,
        # in due-set order.
        if not self._leases.acquire(key, self._clock()):
            logger.info("Skipping task %s: already running", task.id)
            return None
        try:
            async with semaphore:
                try:
                    current = await self._store.get_task(*key)
                except StoreError:
                    logger.warning("Skipping task %s: could not re-read it", task.id)
                    return None
                if current is None or not current.is_due(now):
                    logger.info("Skipping task %s: no longer due", task.id)
                    return None
                if current.last_run != task.last_run:
                    logger.info("Skipping task %s: already ran this window", task.id)
                    return None

                record = await self._executor.execute(current)
                try:
                    await self._rescheduler.reschedule(current, record)
                except Exception:
                    logger.exception("Rescheduling failed for task %s", task.id)
                return record
        finally:
            self._leases.release(key)

    # -- Manual execution ------------------------------------------------------

    async def run_task(self, owner_id: str, task_id: str) -> ExecutionRecord:
        """Run one task now, ignoring its due time but honouring its lease."""
        task = await self._store.get_task(owner_id, task_id)
        if task is None:
            raise TaskNotFoundError(owner_id, task_id)
        if not task.is_active:
            msg = f"Task is not active: {task_id} ({task.status.value})"
            raise TaskInactiveError(msg)
        if not self._leases.acquire(task.key, self._clock()):
            msg = f"Task is already running: {task_id}"
            raise TaskLeasedError(msg)
        try:
            record = await self._executor.execute(task)
            await self._rescheduler.reschedule(task, record)
            return record
        finally:
            self._leases.release(task.key)

    # -- Status ----------------------------------------------------------------

    async def status(self, now: datetime | None = None) -> dict[str, Any]:
        """Summarize scheduler state and the next tasks to come due."""
        now = self._clock() if now is None else now
        active = await self._store.list_active_tasks()
        due = [t for t in active if t.is_due(now)]
        upcoming = sorted(
            (t for t in active if t.next_run is not None and t.next_run > now),
            key=lambda t: t.next_run,
        )[:_UPCOMING_LIMIT]
        return {
            "running": self._running,
            "activeTasks": len(active),
            "dueTasks": len(due),
            "inFlight": len(self._leases),
            "nextExecution": to_timestamp(upcoming[0].next_run) if upcoming else None,
            "upcomingTasks": [
                {
                    "id": t.id,
                    "ownerId": t.owner_id,
                    "name": t.name,
                    "type": t.type.value,
                    "frequency": t.frequency,
                    "nextRun": to_timestamp(t.next_run),
                }
                for t in upcoming
            ],
        }
