"""HTTP health endpoints for container liveness and readiness checks.

Endpoints:
    - GET /livez: always ``alive`` while the process can answer
    - GET /readyz: ``ready`` once the database answers a ping, 503 otherwise
    - GET /healthz: ``ok`` with uptime; with ``deep_check`` enabled it also
      pings the database and reports ``degraded`` with 503 on failure
"""

import logging
import time
from datetime import UTC, datetime
from typing import Any, Protocol

from aiohttp import web

from powa_sentinel.config import ServerConfig

logger = logging.getLogger(__name__)

DEFAULT_HTTP_HOST = "0.0.0.0"


class Pingable(Protocol):
    async def ping(self) -> None:
        ...


class HealthServerError(Exception):
    pass


def format_uptime(seconds: float) -> str:
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


class HealthServer:
    """aiohttp server exposing /healthz, /readyz and /livez.

    ``start`` and ``stop`` are both idempotent. The database check only ever
    calls ``reader.ping()``.

    Example:
        server = HealthServer(config.server, reader)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        config: ServerConfig,
        reader: Pingable | None = None,
        host: str = DEFAULT_HTTP_HOST,
    ) -> None:
        self._config = config
        self._reader = reader
        self._host = host
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started = time.monotonic()
        self._last_ping: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def port(self) -> int:
        return self._config.port

    @property
    def last_ping(self) -> datetime | None:
        return self._last_ping

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/readyz", self._handle_ready)
        app.router.add_get("/livez", self._handle_live)
        return app

    async def start(self) -> None:
        if self._runner is not None:
            logger.debug("Health server already started, skipping")
            return

        self._started = time.monotonic()
        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._config.port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            raise HealthServerError(
                f"failed to start health server on {self._host}:{self._config.port}: {exc}"
            ) from exc

        self._runner = runner
        self._site = site
        logger.info("Health server listening on %s:%d", self._host, self._config.port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        if self._site is not None:
            await self._site.stop()
        await self._runner.cleanup()
        self._runner = None
        self._site = None
        logger.info("Health server stopped")

    def _uptime(self) -> str:
        return format_uptime(time.monotonic() - self._started)

    async def _check_database(self, reader: Pingable) -> dict[str, Any]:
        started = time.perf_counter()
        try:
            await reader.ping()
        except Exception as exc:
            logger.warning("Database health check failed: %s", exc)
            return {"connected": False, "error": str(exc)}

        latency_ms = (time.perf_counter() - started) * 1000
        self._last_ping = datetime.now(UTC)
        return {"connected": True, "latency": f"{latency_ms:.3f}ms"}

    @staticmethod
    def _body(status: str, **extra: Any) -> dict[str, Any]:
        return {"status": status, "timestamp": datetime.now(UTC).isoformat(), **extra}

    async def _handle_health(self, request: web.Request) -> web.Response:
        body = self._body("ok", uptime=self._uptime())
        if self._config.deep_check and self._reader is not None:
            database = await self._check_database(self._reader)
            body["database"] = database
            if not database["connected"]:
                body["status"] = "degraded"

        status_code = 200 if body["status"] == "ok" else 503
        return web.json_response(body, status=status_code)

    async def _handle_ready(self, request: web.Request) -> web.Response:
        if self._reader is not None:
            database = await self._check_database(self._reader)
            if not database["connected"]:
                return web.json_response(self._body("not ready", database=database), status=503)
        return web.json_response(self._body("ready"))

    async def _handle_live(self, request: web.Request) -> web.Response:
        return web.json_response(self._body("alive", uptime=self._uptime()))
