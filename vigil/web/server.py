"""HTTP trigger surface: cron endpoint, scheduler status, and health check.

For hosts that cannot keep an in-process timer alive, an external cron
service calls ``/cron/tasks`` with ``Authorization: Bearer <CRON_SECRET>``.
Cron providers deliver at-least-once, so duplicate calls are expected; the
engine's lease and due re-check keep them from running a task twice.
"""

from __future__ import annotations

import hmac
import logging

from aiohttp import web

from vigil.config import settings
from vigil.scheduler.engine import SchedulerEngine
from vigil.scheduler.errors import StoreError

logger = logging.getLogger(__name__)

ENGINE_KEY = web.AppKey("engine", SchedulerEngine)


def _authorized(request: web.Request) -> bool:
    """Check the bearer secret. No configured secret means no access."""
    if not settings.cron_secret:
        return False
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip(), settings.cron_secret)


def _unauthorized(request: web.Request) -> web.Response:
    logger.warning("Cron request rejected: invalid secret (path=%s)", request.path)
    return web.json_response({"error": "unauthorized"}, status=401)


async def _handle_cron_tasks(request: web.Request) -> web.Response:
    """GET|POST /cron/tasks — run one tick and return its summary."""
    if not _authorized(request):
        return _unauthorized(request)

    engine = request.app[ENGINE_KEY]
    logger.info("Cron tick requested (method=%s)", request.method)
    try:
        summary = await engine.run_due_tasks()
    except StoreError as exc:
        logger.error("Cron tick aborted: %s", exc)
        return web.json_response({"success": False, "error": str(exc)}, status=503)

    return web.json_response(
        {
            "success": True,
            **summary.to_dict(),
            "message": (
                f"Executed {summary.attempted} tasks: {summary.succeeded} successful,"
                f" {summary.failed} failed, {summary.skipped} skipped"
            ),
        }
    )


async def _handle_cron_status(request: web.Request) -> web.Response:
    """GET /cron/status — scheduler state and upcoming tasks."""
    if not _authorized(request):
        return _unauthorized(request)
    engine = request.app[ENGINE_KEY]
    try:
        status = await engine.status()
    except StoreError as exc:
        return web.json_response({"error": str(exc)}, status=503)
    return web.json_response({"status": "operational", **status})


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


def _create_web_app(engine: SchedulerEngine) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[ENGINE_KEY] = engine
    app.router.add_get("/health", _health)
    app.router.add_get("/cron/tasks", _handle_cron_tasks)
    app.router.add_post("/cron/tasks", _handle_cron_tasks)
    app.router.add_get("/cron/status", _handle_cron_status)
    return app


class CronServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        engine: SchedulerEngine,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self._engine = engine
        self.host = settings.http_host if host is None else host
        self.port = settings.http_port if port is None else port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for cron calls."""
        if not settings.cron_secret:
            logger.warning("CRON_SECRET is empty; /cron endpoints will reject every call")

        app = _create_web_app(self._engine)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("HTTP server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")
