"""TaskExecutor — runs one task through its handler and records the attempt."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from vigil.config import settings
from vigil.scheduler.errors import HandlerError, StoreError
from vigil.scheduler.handlers import HandlerResult, handler_registry
from vigil.scheduler.models import ExecutionRecord, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from vigil.scheduler.handlers import HandlerRegistry
    from vigil.scheduler.history import HistoryLog
    from vigil.scheduler.models import Task

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Executes tasks by dispatching to the handler registered for their type.

    A handler that raises, times out, is missing, or reports
    ``success=False`` yields a failed ExecutionRecord; nothing propagates to
    the caller.  The executor appends every record to the history log but
    never touches the Task itself.

    Args:
        history: HistoryLog that receives every record.
        registry: HandlerRegistry to resolve handlers (default: the global one).
        timeout: Per-execution timeout in seconds (default from settings).
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        history: HistoryLog,
        registry: HandlerRegistry | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._history = history
        self._registry = registry or handler_registry
        self._timeout = settings.execution_timeout_seconds if timeout is None else timeout
        self._clock = clock

    async def execute(self, task: Task) -> ExecutionRecord:
        """Run *task* once and return the resulting ExecutionRecord."""
        logger.info(
            "Executing task: '%s' (%s/%s) type=%s",
            task.name,
            task.owner_id,
            task.id,
            task.type.value,
        )
        start_time = self._clock()
        started = time.monotonic()
        result: HandlerResult | None = None
        error: str | None = None

        try:
            result = await self._run_handler(task)
            if not result.success:
                error = result.error or result.message or "Handler reported failure"
        except TimeoutError:
            error = f"Timed out after {self._timeout:g}s"
            logger.warning("Task timed out: '%s' (%s)", task.name, task.id)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.exception("Task execution failed: '%s' (%s)", task.name, task.id)

        record = ExecutionRecord(
            task_id=task.id,
            owner_id=task.owner_id,
            task_type=task.type,
            start_time=start_time,
            duration_ms=int((time.monotonic() - started) * 1000),
            success=error is None,
            error=error,
            result_summary=result.message if result and result.message else None,
            data=result.data if result else None,
        )

        if record.success:
            logger.info(
                "Task executed successfully: '%s' (%s) in %dms",
                task.name,
                task.id,
                record.duration_ms,
            )
            self._log_alert(task, record)
        else:
            logger.warning("Task failed: '%s' (%s): %s", task.name, task.id, error)

        try:
            await self._history.append(record)
        except StoreError:
            logger.warning("Could not record history for task %s", task.id)

        return record

    async def _run_handler(self, task: Task) -> HandlerResult:
        handler = self._registry.get(task.type)
        if handler is None:
            msg = f"No handler registered for task type: {task.type.value}"
            raise HandlerError(msg)
        raw = await asyncio.wait_for(handler(task.config), timeout=self._timeout)
        return HandlerResult.coerce(raw)

    def _log_alert(self, task: Task, record: ExecutionRecord) -> None:
        """Surface handler alerts for tasks that asked to be notified."""
        if not record.data or not record.data.get("alert"):
            return
        if task.config.notifications is None:
            return
        logger.info(
            "Task alert: '%s' (%s/%s): %s",
            task.name,
            task.owner_id,
            task.id,
            record.data.get("alerts") or record.result_summary,
        )
