"""Recurring task system — models, persistence, execution, and scheduling."""

from vigil.scheduler.configs import TaskType
from vigil.scheduler.engine import SchedulerEngine
from vigil.scheduler.executor import TaskExecutor
from vigil.scheduler.frequency import CONTINUOUS, Interval, parse_frequency
from vigil.scheduler.handlers import HandlerRegistry, HandlerResult, handler_registry
from vigil.scheduler.history import HistoryLog
from vigil.scheduler.models import ExecutionRecord, Task, TaskStatus, TickSummary
from vigil.scheduler.rescheduler import Rescheduler
from vigil.scheduler.service import TaskService
from vigil.scheduler.store import TaskStore

__all__ = [
    "CONTINUOUS",
    "ExecutionRecord",
    "HandlerRegistry",
    "HandlerResult",
    "HistoryLog",
    "Interval",
    "Rescheduler",
    "SchedulerEngine",
    "Task",
    "TaskExecutor",
    "TaskService",
    "TaskStatus",
    "TaskStore",
    "TaskType",
    "TickSummary",
    "handler_registry",
    "parse_frequency",
]
