"""HTTP health check server"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

if TYPE_CHECKING:
    from shared.database import DatabaseManager
    from tracker.engine.scheduler import GuildScheduler

logger = logging.getLogger(__name__)

SERVICE_NAME = "niibot-tracker"


class HealthCheckServer:
    """Liveness and status endpoints for the tracker process."""

    def __init__(
        self,
        bot: Any = None,
        scheduler: "GuildScheduler | None" = None,
        db: "DatabaseManager | None" = None,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self.bot = bot
        self.scheduler = scheduler
        self.db = db
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._heartbeat_task: asyncio.Task | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/status", self.handle_status)
        self.app.router.add_get("/ping", self.handle_ping)

    def _ready(self) -> bool:
        return self.bot is not None and self.bot.is_ready()

    def _active_trackers(self) -> int:
        return len(self.scheduler.running()) if self.scheduler is not None else 0

    async def handle_root(self, request: web.Request) -> web.Response:
        return web.json_response({"service": SERVICE_NAME, "status": "running"})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Always 200 so platform liveness checks pass while connecting"""
        ready = self._ready()
        return web.json_response({"status": "healthy" if ready else "starting", "ready": ready})

    async def handle_status(self, request: web.Request) -> web.Response:
        ready = self._ready()
        database = await self.db.check_health() if self.db is not None else False
        return web.json_response(
            {
                "service": SERVICE_NAME,
                "bot_id": str(self.bot.user.id) if ready and self.bot.user else None,
                "uptime_seconds": int(time.time() - self._start_time),
                "guilds": len(self.bot.guilds) if ready else 0,
                "active_trackers": self._active_trackers(),
                "database": database,
            }
        )

    async def handle_ping(self, request: web.Request) -> web.Response:
        return web.Response(text="pong")

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(300)
            uptime = int(time.time() - self._start_time)
            logger.info(
                f"Heartbeat: uptime={uptime}s, ready={self._ready()}, "
                f"trackers={self._active_trackers()}"
            )

    async def start(self) -> None:
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()
            site = web.TCPSite(self.runner, self.host, self.port)
            await site.start()
            self._heartbeat_task = asyncio.create_task(self._heartbeat())
            logger.info(f"Health server started on {self.host}:{self.port}")
        except Exception as e:
            logger.exception(f"Failed to start health server: {e}")
            raise

    async def stop(self) -> None:
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
        if self.runner:
            try:
                await self.runner.cleanup()
                logger.info("Health server stopped")
            except Exception as e:
                logger.exception(f"Error stopping health server: {e}")
