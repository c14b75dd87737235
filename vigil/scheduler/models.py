"""Task and ExecutionRecord data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from vigil.scheduler.configs import (
    TaskConfig,
    TaskType,
    build_config,
    dump_config,
    parse_task_type,
)
from vigil.scheduler.frequency import is_continuous


class TaskStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_timestamp(value: datetime | None) -> str | None:
    """Serialize to a fixed-width UTC ISO string so SQL comparisons sort correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def success_rate(success_count: int, execution_count: int) -> float:
    return 100 * success_count / max(execution_count, 1)


@dataclass
class TaskResult:
    """Snapshot of the most recent execution outcome."""

    success: bool
    message: str
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskResult:
        return cls(
            success=bool(raw.get("success")),
            message=str(raw.get("message", "")),
            data=raw.get("data"),
            error=raw.get("error"),
        )


@dataclass
class Task:
    """A recurring unit of work owned by one user.

    Attributes:
        id: Identifier, unique per owner (UUID hex by default).
        owner_id: The user who owns the task.
        name: Display name.
        type: Which handler runs the task.
        frequency: Free-text descriptor ("Every 5 minutes", "Real-time", ...).
            Source of truth for rescheduling.
        config: Typed configuration for ``type``. Plain dicts are validated
            on construction.
        description: Display-only description.
        status: active / paused / completed / failed.
        last_run: When the task last ran (creation time before the first run).
        next_run: When the task is next due. ``None`` for continuous tasks.
        execution_count / success_count / failure_count: Rolling counters.
        success_rate: ``100 * success_count / max(execution_count, 1)``.
        last_result: Outcome of the most recent execution.
        created_at / updated_at: Audit timestamps.
    """

    id: str
    owner_id: str
    name: str
    type: TaskType
    frequency: str
    config: TaskConfig | dict[str, Any] | None = None
    description: str = ""
    status: TaskStatus = TaskStatus.ACTIVE
    last_run: datetime | None = None
    next_run: datetime | None = None
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0
    last_result: TaskResult | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.type = parse_task_type(self.type)
        self.status = TaskStatus(self.status)
        self.config = build_config(self.type, self.config)
        if self.updated_at is None:
            self.updated_at = self.created_at

    # -- Convenience properties ------------------------------------------------

    @property
    def key(self) -> tuple[str, str]:
        return (self.owner_id, self.id)

    @property
    def is_continuous(self) -> bool:
        return is_continuous(self.frequency)

    @property
    def is_active(self) -> bool:
        return self.status is TaskStatus.ACTIVE

    def is_due(self, now: datetime) -> bool:
        """Active and either continuous or past its next_run."""
        if not self.is_active:
            return False
        return self.next_run is None or self.next_run <= now

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.owner_id,
            self.id,
            self.name,
            self.description,
            self.type.value,
            self.frequency,
            self.status.value,
            to_timestamp(self.last_run),
            to_timestamp(self.next_run),
            self.execution_count,
            self.success_count,
            self.failure_count,
            self.success_rate,
            json.dumps(self.last_result.to_dict()) if self.last_result else None,
            json.dumps(dump_config(self.config)),
            to_timestamp(self.created_at),
            to_timestamp(self.updated_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a ``tasks`` row tuple."""
        return cls(
            owner_id=row[0],
            id=row[1],
            name=row[2],
            description=row[3] or "",
            type=row[4],
            frequency=row[5],
            status=row[6],
            last_run=from_timestamp(row[7]),
            next_run=from_timestamp(row[8]),
            execution_count=row[9],
            success_count=row[10],
            failure_count=row[11],
            success_rate=row[12],
            last_result=TaskResult.from_dict(json.loads(row[13])) if row[13] else None,
            config=json.loads(row[14]) if row[14] else None,
            created_at=from_timestamp(row[15]),
            updated_at=from_timestamp(row[16]),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view, camelCase like the dashboard expects."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "frequency": self.frequency,
            "status": self.status.value,
            "lastRun": to_timestamp(self.last_run),
            "nextRun": to_timestamp(self.next_run),
            "executionCount": self.execution_count,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "successRate": self.success_rate,
            "lastResult": self.last_result.to_dict() if self.last_result else None,
            "config": dump_config(self.config),
            "createdAt": to_timestamp(self.created_at),
            "updatedAt": to_timestamp(self.updated_at),
        }


@dataclass
class ExecutionRecord:
    """One historical execution attempt."""

    task_id: str
    owner_id: str
    task_type: TaskType
    start_time: datetime
    duration_ms: int
    success: bool
    error: str | None = None
    result_summary: str | None = None
    data: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        self.task_type = parse_task_type(self.task_type)

    def to_result(self) -> TaskResult:
        message = self.result_summary or (
            "Task executed successfully" if self.success else "Task execution failed"
        )
        return TaskResult(
            success=self.success, message=message, data=self.data, error=self.error
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "ownerId": self.owner_id,
            "taskType": self.task_type.value,
            "startTime": to_timestamp(self.start_time),
            "durationMs": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "resultSummary": self.result_summary,
            "data": self.data,
        }


@dataclass
class TickSummary:
    """Outcome counts for one scheduler tick."""

    started_at: datetime
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": to_timestamp(self.started_at),
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex
