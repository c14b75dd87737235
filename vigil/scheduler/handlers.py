"""Task handler registry — the seam between the scheduler and task logic.

Scan, price, wallet and audit logic lives in the host application.  The
scheduler only knows that each :class:`TaskType` maps to an async callable
taking the task's typed config and returning a :class:`HandlerResult`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from vigil.scheduler.configs import TaskConfig, TaskType, parse_task_type

logger = logging.getLogger(__name__)


@dataclass
class HandlerResult:
    """What a handler reports back for one run."""

    success: bool
    message: str = ""
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def coerce(cls, value: HandlerResult | dict[str, Any]) -> HandlerResult:
        """Accept either a HandlerResult or a dict of the same shape.

        ``data`` is normalized to plain JSON types; values JSON cannot
        encode (Decimal, datetime, ...) become their ``str()``.
        """
        if isinstance(value, cls):
            return replace(value, data=_json_safe(value.data))
        if isinstance(value, dict):
            return cls(
                success=bool(value.get("success", False)),
                message=str(value.get("message", "")),
                data=_json_safe(value.get("data")),
                error=value.get("error"),
            )
        msg = f"Handler returned {type(value).__name__}, expected HandlerResult or dict"
        raise TypeError(msg)


def _json_safe(data: dict[str, Any] | None) -> dict[str, Any] | None:
    if data is None:
        return None
    return json.loads(json.dumps(data, default=str))


# Handler signature: async (config) -> HandlerResult | dict
TaskHandler = Callable[[TaskConfig], Awaitable["HandlerResult | dict[str, Any]"]]


class HandlerRegistry:
    """Registry of per-type task handlers.

    Usage::

        registry = HandlerRegistry()

        @registry.handler(TaskType.PRICE_ALERT)
        async def check_price(config: PriceAlertConfig) -> HandlerResult:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[TaskType, TaskHandler] = {}

    def handler(self, task_type: TaskType | str) -> Callable[[TaskHandler], TaskHandler]:
        """Decorator to register an async function as the handler for a type."""
        resolved = parse_task_type(task_type)

        def decorator(fn: TaskHandler) -> TaskHandler:
            self.register(resolved, fn)
            return fn

        return decorator

    def register(self, task_type: TaskType | str, fn: TaskHandler) -> None:
        resolved = parse_task_type(task_type)
        if resolved in self._handlers:
            logger.warning("Replacing handler for task type: %s", resolved.value)
        self._handlers[resolved] = fn
        logger.info("Registered task handler: %s", resolved.value)

    def get(self, task_type: TaskType) -> TaskHandler | None:
        """Look up a handler by task type."""
        return self._handlers.get(task_type)

    @property
    def task_types(self) -> list[TaskType]:
        """All task types with a registered handler."""
        return list(self._handlers)


handler_registry = HandlerRegistry()
