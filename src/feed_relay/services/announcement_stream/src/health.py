"""HTTP health endpoints for the announcement stream service.

`/health` mirrors the controller's health rule, `/ready` reports whether the
stream is subscribed right now, `/live` only proves the process answers and
`/status` dumps the full controller status for debugging.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import web, web_request
from aiohttp.web_response import Response


logger = logging.getLogger(__name__)

SERVICE_NAME = "announcement-stream"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _failure(error: Exception, **fields) -> Response:
    body = {"service": SERVICE_NAME, "error": str(error), "timestamp": _now(), **fields}
    return web.json_response(body, status=503)


class HealthCheckHandler:
    """Request handlers; `service` must provide a synchronous `health_check()`."""

    def __init__(self, service):
        self.service = service

    def _stream(self, health_data: Dict[str, Any]) -> Dict[str, Any]:
        return health_data.get("components", {}).get("stream", {})

    async def health(self, request: web_request.Request) -> Response:
        try:
            health_data = self.service.health_check()
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return _failure(e, status="unhealthy")

        status = 200 if health_data["status"] == "healthy" else 503
        return web.json_response(health_data, status=status)

    async def ready(self, request: web_request.Request) -> Response:
        try:
            health_data = self.service.health_check()
        except Exception as e:
            logger.error(f"Readiness check failed: {e}", exc_info=True)
            return _failure(e, ready=False)

        stream = self._stream(health_data)
        is_ready = stream.get("state") == "subscribed"
        return web.json_response(
            {
                "ready": is_ready,
                "state": stream.get("state"),
                "reconnect_attempts": stream.get("reconnect_attempts"),
                "timestamp": _now()
            },
            status=200 if is_ready else 503
        )

    async def live(self, request: web_request.Request) -> Response:
        return web.json_response({"alive": True, "timestamp": _now()})

    async def status(self, request: web_request.Request) -> Response:
        try:
            return web.json_response(self._stream(self.service.health_check()))
        except Exception as e:
            logger.error(f"Status lookup failed: {e}", exc_info=True)
            return _failure(e)


def create_app(service) -> web.Application:
    app = web.Application()
    handler = HealthCheckHandler(service)
    app.router.add_get('/health', handler.health)
    app.router.add_get('/ready', handler.ready)
    app.router.add_get('/live', handler.live)
    app.router.add_get('/status', handler.status)
    return app


class HealthCheckServer:
    """Runs `create_app(service)` on host:port."""

    def __init__(self, service, host: str = "0.0.0.0", port: int = 8080):
        self.service = service
        self.host = host
        self.port = port
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self):
        self.runner = web.AppRunner(create_app(self.service))
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"Health check server listening on http://{self.host}:{self.port}")

    async def stop(self):
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("Health check server stopped")
