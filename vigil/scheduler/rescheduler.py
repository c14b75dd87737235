"""Rescheduler — folds an ExecutionRecord back into its Task."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING

from vigil.scheduler.errors import TaskNotFoundError
from vigil.scheduler.frequency import next_run_after
from vigil.scheduler.models import success_rate, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from vigil.scheduler.models import ExecutionRecord, Task, TaskStatus
    from vigil.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

# Columns an execution outcome writes.
_OUTCOME_FIELDS = (
    "last_run",
    "next_run",
    "execution_count",
    "success_count",
    "failure_count",
    "success_rate",
    "last_result",
    "updated_at",
)

# Host hook: return a new status for the task (e.g. FAILED), or None to keep it.
FailurePolicy = Callable[["Task", "ExecutionRecord"], "TaskStatus | None"]


def apply_execution(task: Task, record: ExecutionRecord, now: datetime | None = None) -> Task:
    """Return a copy of *task* updated with the outcome of *record*.

    ``next_run`` is computed from the record's start time, not from when
    this function runs, so late ticks do not drift the schedule.
    """
    execution_count = task.execution_count + 1
    success_count = task.success_count + (1 if record.success else 0)
    failure_count = task.failure_count + (0 if record.success else 1)
    return replace(
        task,
        last_run=record.start_time,
        next_run=next_run_after(task.frequency, record.start_time),
        execution_count=execution_count,
        success_count=success_count,
        failure_count=failure_count,
        success_rate=success_rate(success_count, execution_count),
        last_result=record.to_result(),
        updated_at=now or utcnow(),
    )


class Rescheduler:
    """Applies execution outcomes and persists them through the TaskStore.

    A failed run never changes the task's status by itself.  Hosts that
    want e.g. "fail after N bad runs" pass a *failure_policy*.

    Args:
        store: TaskStore to persist updated tasks.
        failure_policy: Optional hook deciding a status change after a run.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: TaskStore,
        failure_policy: FailurePolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._failure_policy = failure_policy
        self._clock = clock

    async def reschedule(self, task: Task, record: ExecutionRecord) -> Task:
        """Update *task* from *record* and write it back in one keyed update.

        The outcome is applied to the stored copy of the task and only the
        outcome columns are written, so edits made while it was running
        (pause, rename, new config) are kept.
        """
        current = await self._store.get_task(task.owner_id, task.id)
        if current is None:
            raise TaskNotFoundError(task.owner_id, task.id)
        updated = apply_execution(current, record, now=self._clock())
        fields = list(_OUTCOME_FIELDS)

        if self._failure_policy is not None:
            new_status = self._failure_policy(updated, record)
            if new_status is not None and new_status != updated.status:
                logger.info(
                    "Failure policy moved task %s from %s to %s",
                    task.id,
                    updated.status.value,
                    new_status.value,
                )
                updated.status = new_status
                fields.append("status")

        if not await self._store.save_task(updated, fields=fields):
            # Deleted while it was running.
            raise TaskNotFoundError(task.owner_id, task.id)

        logger.info(
            "Rescheduled task %s: next_run=%s success_rate=%.1f%% (%d runs)",
            task.id,
            updated.next_run.isoformat() if updated.next_run else "continuous",
            updated.success_rate,
            updated.execution_count,
        )
        return updated
