"""Vigil entry point — HTTP cron endpoint plus the in-process timer."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from vigil.config import settings

if TYPE_CHECKING:
    from vigil.scheduler.engine import SchedulerEngine

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper()),
)
logger = logging.getLogger(__name__)


def build_engine() -> SchedulerEngine:
    """Wire store, history, executor and rescheduler into a SchedulerEngine.

    Handlers are registered by the host on ``handler_registry`` before
    the engine starts.
    """
    from vigil.scheduler.engine import SchedulerEngine
    from vigil.scheduler.executor import TaskExecutor
    from vigil.scheduler.history import HistoryLog
    from vigil.scheduler.rescheduler import Rescheduler
    from vigil.scheduler.store import TaskStore

    store = TaskStore.get()
    executor = TaskExecutor(history=HistoryLog.get())
    rescheduler = Rescheduler(store=store)
    return SchedulerEngine(store=store, executor=executor, rescheduler=rescheduler)


async def run() -> None:
    """Serve until cancelled."""
    from vigil.scheduler.handlers import handler_registry
    from vigil.web.server import CronServer

    engine = build_engine()
    server = CronServer(engine)

    registered = [t.value for t in handler_registry.task_types]
    if not registered:
        logger.warning("No task handlers registered; every execution will fail")
    else:
        logger.info("Task handlers: %s", registered)

    await server.start()
    if settings.timer_enabled:
        await engine.start()
    else:
        logger.info("Internal timer disabled; relying on /cron/tasks")

    try:
        await asyncio.Event().wait()
    finally:
        await engine.stop()
        await server.stop()


def main() -> None:
    """Start Vigil."""
    logger.info("Starting Vigil...")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
