"""TaskService — task management operations used by the dashboard API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from vigil.scheduler.configs import build_config, parse_task_type
from vigil.scheduler.errors import InvalidTaskError, TaskNotFoundError
from vigil.scheduler.frequency import next_run_after
from vigil.scheduler.models import Task, TaskStatus, make_task_id, utcnow
from vigil.scheduler.templates import (
    TemplateResult,
    get_template,
    merge_config,
    missing_fields,
    recommendations,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from vigil.scheduler.configs import TaskConfig, TaskType
    from vigil.scheduler.engine import SchedulerEngine
    from vigil.scheduler.history import HistoryLog
    from vigil.scheduler.models import ExecutionRecord
    from vigil.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"name", "description", "frequency", "config", "status"})


@dataclass
class TaskStatistics:
    """Aggregate numbers for one owner's tasks."""

    total_tasks: int
    active_tasks: int
    total_executions: int
    successful_executions: int
    failed_executions: int
    average_success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTasks": self.total_tasks,
            "activeTasks": self.active_tasks,
            "totalExecutions": self.total_executions,
            "successfulExecutions": self.successful_executions,
            "failedExecutions": self.failed_executions,
            "averageSuccessRate": self.average_success_rate,
        }


class TaskService:
    """Create, edit, pause, run and inspect an owner's tasks.

    Every operation is scoped to ``owner_id``; a task belonging to someone
    else is reported as not found.

    Args:
        store: TaskStore for task persistence.
        history: HistoryLog for execution history.
        engine: SchedulerEngine used for manual runs.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: TaskStore,
        history: HistoryLog,
        engine: SchedulerEngine,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._history = history
        self._engine = engine
        self._clock = clock

    async def _require(self, owner_id: str, task_id: str) -> Task:
        task = await self._store.get_task(owner_id, task_id)
        if task is None:
            raise TaskNotFoundError(owner_id, task_id)
        return task

    # -- CRUD ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        name: str,
        type: TaskType | str,  # noqa: A002
        frequency: str,
        config: TaskConfig | dict[str, Any] | None = None,
        description: str = "",
    ) -> Task:
        """Create an active task whose first run is one interval from now."""
        if not name.strip():
            msg = "Task name must not be empty"
            raise InvalidTaskError(msg)
        task_type = parse_task_type(type)
        now = self._clock()
        task = Task(
            id=make_task_id(),
            owner_id=owner_id,
            name=name.strip(),
            description=description,
            type=task_type,
            frequency=frequency,
            config=build_config(task_type, config),
            status=TaskStatus.ACTIVE,
            last_run=now,
            next_run=next_run_after(frequency, now),
            created_at=now,
        )
        await self._store.add_task(task)
        logger.info(
            "Created task '%s' (%s/%s) type=%s frequency=%r",
            task.name,
            owner_id,
            task.id,
            task_type.value,
            frequency,
        )
        return task

    async def get(self, owner_id: str, task_id: str) -> Task:
        return await self._require(owner_id, task_id)

    async def list(self, owner_id: str) -> list[Task]:
        return await self._store.list_tasks(owner_id)

    async def update(self, owner_id: str, task_id: str, **fields: Any) -> Task:
        """Apply a partial update.

        Allowed fields: name, description, frequency, config, status.
        A new frequency moves ``next_run`` to ``last_run + interval``.
        Only the edited columns are written.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Cannot update field(s): {', '.join(sorted(unknown))}"
            raise InvalidTaskError(msg)

        task = await self._require(owner_id, task_id)
        changes: dict[str, Any] = {}
        if "name" in fields:
            if not str(fields["name"]).strip():
                msg = "Task name must not be empty"
                raise InvalidTaskError(msg)
            changes["name"] = str(fields["name"]).strip()
        if "description" in fields:
            changes["description"] = fields["description"] or ""
        if "config" in fields:
            changes["config"] = build_config(task.type, fields["config"])
        if "status" in fields:
            try:
                changes["status"] = TaskStatus(fields["status"])
            except ValueError:
                msg = f"Unknown status: {fields['status']}"
                raise InvalidTaskError(msg) from None
        if "frequency" in fields and fields["frequency"] != task.frequency:
            frequency = fields["frequency"]
            changes["frequency"] = frequency
            anchor = task.last_run or self._clock()
            changes["next_run"] = next_run_after(frequency, anchor)

        updated = replace(task, updated_at=self._clock(), **changes)
        if not await self._store.save_task(updated, fields=[*changes, "updated_at"]):
            raise TaskNotFoundError(owner_id, task_id)
        logger.info("Updated task %s/%s: %s", owner_id, task_id, sorted(changes))
        return await self._require(owner_id, task_id)

    async def delete(self, owner_id: str, task_id: str) -> None:
        """Delete a task and its execution history."""
        if not await self._store.delete_task(owner_id, task_id):
            raise TaskNotFoundError(owner_id, task_id)
        await self._history.purge(owner_id, task_id)

    async def toggle(self, owner_id: str, task_id: str) -> Task:
        """Pause an active task; resume anything else.

        ``next_run`` is left alone, so a resumed task whose time has passed
        is picked up by the next tick.
        """
        task = await self._require(owner_id, task_id)
        new_status = TaskStatus.PAUSED if task.is_active else TaskStatus.ACTIVE
        updated = replace(task, status=new_status, updated_at=self._clock())
        if not await self._store.save_task(updated, fields=["status", "updated_at"]):
            raise TaskNotFoundError(owner_id, task_id)
        logger.info("Task %s/%s is now %s", owner_id, task_id, new_status.value)
        return await self._require(owner_id, task_id)

    async def create_from_template(
        self,
        owner_id: str,
        template_name: str,
        *,
        name: str | None = None,
        frequency: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> TemplateResult:
        """Create a task from a built-in template, with user overrides.

        No task is created while required fields are missing; the result
        lists them instead.
        """
        template = get_template(template_name)
        if template is None:
            msg = f"Unknown template: {template_name}"
            raise InvalidTaskError(msg)
        merged = merge_config(template, config)
        missing = missing_fields(template, merged)
        tips = recommendations(template, merged, frequency)
        if missing:
            return TemplateResult(task=None, missing_required_fields=missing, recommendations=tips)
        task = await self.create(
            owner_id,
            name=name or template.name,
            type=template.type,
            frequency=frequency or template.default_frequency,
            config=merged,
            description=template.description,
        )
        return TemplateResult(task=task, missing_required_fields=[], recommendations=tips)

    # -- Execution -------------------------------------------------------------

    async def execute(self, owner_id: str, task_id: str) -> ExecutionRecord:
        """Run a task immediately, outside its schedule."""
        return await self._engine.run_task(owner_id, task_id)

    async def history(
        self, owner_id: str, task_id: str, limit: int = 10
    ) -> list[ExecutionRecord]:
        await self._require(owner_id, task_id)
        return await self._history.list(owner_id, task_id, limit)

    async def statistics(self, owner_id: str) -> TaskStatistics:
        """Execution totals and the mean success rate across an owner's tasks."""
        tasks = await self._store.list_tasks(owner_id)
        executions = sum(t.execution_count for t in tasks)
        successes = sum(t.success_count for t in tasks)
        average = sum(t.success_rate for t in tasks) / len(tasks) if tasks else 0.0
        return TaskStatistics(
            total_tasks=len(tasks),
            active_tasks=sum(1 for t in tasks if t.is_active),
            total_executions=executions,
            successful_executions=successes,
            failed_executions=executions - successes,
            average_success_rate=average,
        )
