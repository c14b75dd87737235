"""TaskStore — libsql CRUD and due-set query for tasks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vigil.db import connection, transaction
from vigil.scheduler.errors import InvalidTaskError, store_errors
from vigil.scheduler.models import Task, TaskStatus, to_timestamp

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS tasks (
    owner_id TEXT NOT NULL,
    id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL,
    frequency TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    last_run TEXT,
    next_run TEXT,
    execution_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    failure_count INTEGER NOT NULL DEFAULT 0,
    success_rate REAL NOT NULL DEFAULT 0,
    last_result TEXT,
    config TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (owner_id, id)
)
"""

_CREATE_DUE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks (status, next_run)
"""

_COLUMNS = (
    "owner_id, id, name, description, type, frequency, status, last_run, next_run,"
    " execution_count, success_count, failure_count, success_rate, last_result,"
    " config, created_at, updated_at"
)

_COLUMN_NAMES = tuple(name.strip() for name in _COLUMNS.split(","))
_MUTABLE_COLUMNS = _COLUMN_NAMES[2:]

# Stable dispatch order within a tick.
_DUE_ORDER = "ORDER BY created_at, owner_id, id"


class TaskStore:
    """Persists tasks in SQLite / Turso, keyed by ``(owner_id, id)``.

    Singleton accessed via ``TaskStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Every write touches exactly one row, so writes to different tasks never
    conflict.  Writers to the same task name the columns they own.
    """

    _instance: TaskStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> TaskStore:
        """Return the shared TaskStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _ensure_schema(self) -> None:
        if self._initialised:
            return
        async with transaction(self._db_path) as db:
            await db.execute(_CREATE_TABLE)
            await db.execute(_CREATE_DUE_INDEX)
        self._initialised = True

    async def _fetch(self, sql: str, params: tuple = ()) -> list[Task]:
        await self._ensure_schema()
        async with connection(self._db_path) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [Task.from_row(row) for row in rows]

    # -- CRUD ------------------------------------------------------------------

    async def add_task(self, task: Task) -> Task:
        """Insert a new task. Returns the same task object."""
        async with store_errors("add task"):
            row = task.to_row()
            await self._ensure_schema()
            async with transaction(self._db_path) as db:
                await db.execute(
                    f"INSERT INTO tasks ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    row,
                )
        logger.info("Added task: %s (%s/%s)", task.name, task.owner_id, task.id)
        return task

    async def get_task(self, owner_id: str, task_id: str) -> Task | None:
        """Fetch a task by key, or None if not found."""
        async with store_errors("get task"):
            rows = await self._fetch(
                f"SELECT {_COLUMNS} FROM tasks WHERE owner_id = ? AND id = ?",
                (owner_id, task_id),
            )
        return rows[0] if rows else None

    async def list_tasks(self, owner_id: str) -> list[Task]:
        """Return an owner's tasks, newest first."""
        async with store_errors("list tasks"):
            return await self._fetch(
                f"SELECT {_COLUMNS} FROM tasks WHERE owner_id = ? "
                "ORDER BY created_at DESC, id",
                (owner_id,),
            )

    async def list_active_tasks(self) -> list[Task]:
        """Return every active task across owners."""
        async with store_errors("list active tasks"):
            return await self._fetch(
                f"SELECT {_COLUMNS} FROM tasks WHERE status = ? {_DUE_ORDER}",
                (TaskStatus.ACTIVE.value,),
            )

    async def list_due_tasks(self, now: datetime) -> list[Task]:
        """Active tasks whose next_run is unset or has passed, in stable order."""
        async with store_errors("list due tasks"):
            return await self._fetch(
                f"SELECT {_COLUMNS} FROM tasks "
                "WHERE status = ? AND (next_run IS NULL OR next_run <= ?) "
                f"{_DUE_ORDER}",
                (TaskStatus.ACTIVE.value, to_timestamp(now)),
            )

    async def save_task(self, task: Task, fields: Iterable[str] | None = None) -> bool:
        """Write *task* back in one keyed update.

        With *fields*, only those columns are written, so writers that own
        different columns (the rescheduler, a pause, a rename) do not undo
        each other.  Returns True if the row exists (and was updated).
        """
        async with store_errors("save task"):
            values = dict(zip(_COLUMN_NAMES, task.to_row(), strict=True))
            columns = list(_MUTABLE_COLUMNS if fields is None else fields)
            invalid = sorted(set(columns) - set(_MUTABLE_COLUMNS))
            if invalid or not columns:
                msg = f"Cannot save task column(s): {', '.join(invalid) or '(none)'}"
                raise InvalidTaskError(msg)
            assignments = ", ".join(f"{column} = ?" for column in columns)

            await self._ensure_schema()
            async with transaction(self._db_path) as db:
                cursor = await db.execute(
                    f"UPDATE tasks SET {assignments} WHERE owner_id = ? AND id = ?",
                    (*(values[column] for column in columns), task.owner_id, task.id),
                )
                return cursor.rowcount > 0

    async def delete_task(self, owner_id: str, task_id: str) -> bool:
        """Delete a task. Returns True if a row was removed."""
        async with store_errors("delete task"):
            await self._ensure_schema()
            async with transaction(self._db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM tasks WHERE owner_id = ? AND id = ?",
                    (owner_id, task_id),
                )
                deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted task: %s/%s", owner_id, task_id)
        return deleted
