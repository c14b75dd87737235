"""Scheduler error taxonomy."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class SchedulerError(Exception):
    """Base class for all scheduler errors."""


class StoreError(SchedulerError):
    """Task Store or History Log persistence failed."""


class TaskNotFoundError(SchedulerError):
    """The task does not exist or belongs to another owner."""

    def __init__(self, owner_id: str, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.owner_id = owner_id
        self.task_id = task_id


class TaskInactiveError(SchedulerError):
    """A manual run was requested for a task that is not active."""


class TaskLeasedError(SchedulerError):
    """The task is already executing in this process."""


class InvalidTaskError(SchedulerError, ValueError):
    """Task fields or configuration failed validation."""


class HandlerError(SchedulerError):
    """A per-type handler is missing or reported failure."""


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise persistence failures inside the block as StoreError."""
    try:
        yield
    except SchedulerError:
        raise
    except Exception as exc:
        logger.error("Store operation failed: %s (%s)", operation, exc)
        msg = f"{operation} failed: {exc}"
        raise StoreError(msg) from exc
