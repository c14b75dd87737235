"""HistoryLog — bounded, append-only execution history per task."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from vigil.config import settings
from vigil.db import connection, transaction
from vigil.scheduler.errors import store_errors
from vigil.scheduler.models import ExecutionRecord, from_timestamp, to_timestamp

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS task_executions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    task_type TEXT NOT NULL,
    start_time TEXT NOT NULL,
    duration_ms INTEGER NOT NULL,
    success INTEGER NOT NULL,
    error TEXT,
    result_summary TEXT,
    data TEXT
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_task_executions_owner_task
ON task_executions (owner_id, task_id, seq)
"""

_COLUMNS = (
    "task_id, owner_id, task_type, start_time, duration_ms, success, error,"
    " result_summary, data"
)


def _to_row(record: ExecutionRecord) -> tuple:
    return (
        record.task_id,
        record.owner_id,
        record.task_type.value,
        to_timestamp(record.start_time),
        record.duration_ms,
        int(record.success),
        record.error,
        record.result_summary,
        json.dumps(record.data) if record.data is not None else None,
    )


def _from_row(row: tuple) -> ExecutionRecord:
    return ExecutionRecord(
        task_id=row[0],
        owner_id=row[1],
        task_type=row[2],
        start_time=from_timestamp(row[3]),
        duration_ms=row[4],
        success=bool(row[5]),
        error=row[6],
        result_summary=row[7],
        data=json.loads(row[8]) if row[8] else None,
    )


class HistoryLog:
    """Stores ExecutionRecords, keeping at most *retention* entries per task.

    A task is identified by ``(owner_id, task_id)``, the same key the
    TaskStore uses.  Insertion order is the source of truth for "most
    recent": eviction drops the lowest sequence numbers first.
    """

    _instance: HistoryLog | None = None

    def __init__(self, db_path: Path | None = None, retention: int | None = None) -> None:
        self._db_path = db_path
        self.retention = settings.history_retention if retention is None else retention
        self._initialised = False

    @classmethod
    def get(cls) -> HistoryLog:
        """Return the shared HistoryLog instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def _ensure_schema(self) -> None:
        if self._initialised:
            return
        async with transaction(self._db_path) as db:
            await db.execute(_CREATE_TABLE)
            await db.execute(_CREATE_INDEX)
        self._initialised = True

    async def append(self, record: ExecutionRecord) -> None:
        """Append *record* and evict the task's oldest entries beyond the cap."""
        async with store_errors("append history"):
            row = _to_row(record)
            await self._ensure_schema()
            async with transaction(self._db_path) as db:
                await db.execute(
                    f"INSERT INTO task_executions ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    row,
                )
                cursor = await db.execute(
                    """
                    DELETE FROM task_executions
                    WHERE owner_id = ? AND task_id = ? AND seq NOT IN (
                        SELECT seq FROM task_executions
                        WHERE owner_id = ? AND task_id = ?
                        ORDER BY seq DESC
                        LIMIT ?
                    )
                    """,
                    (
                        record.owner_id,
                        record.task_id,
                        record.owner_id,
                        record.task_id,
                        self.retention,
                    ),
                )
                if cursor.rowcount > 0:
                    logger.debug(
                        "Evicted %d history entr(ies) for task %s/%s",
                        cursor.rowcount,
                        record.owner_id,
                        record.task_id,
                    )

    async def list(
        self, owner_id: str, task_id: str, limit: int = 10
    ) -> list[ExecutionRecord]:
        """Return up to *limit* records for the task, most recent first."""
        if limit <= 0:
            return []
        async with store_errors("list history"):
            await self._ensure_schema()
            async with connection(self._db_path) as db:
                cursor = await db.execute(
                    f"SELECT {_COLUMNS} FROM task_executions "
                    "WHERE owner_id = ? AND task_id = ? "
                    "ORDER BY seq DESC LIMIT ?",
                    (owner_id, task_id, min(limit, self.retention)),
                )
                rows = await cursor.fetchall()
        return [_from_row(row) for row in rows]

    async def purge(self, owner_id: str, task_id: str) -> int:
        """Delete all history for a task. Returns the number of rows removed."""
        async with store_errors("purge history"):
            await self._ensure_schema()
            async with transaction(self._db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM task_executions WHERE owner_id = ? AND task_id = ?",
                    (owner_id, task_id),
                )
                return cursor.rowcount
