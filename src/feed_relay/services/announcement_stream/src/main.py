"""Announcement Stream Service - Binance announcements to DingTalk."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from .clients.notifier import DingTalkNotifier
from .config.settings import AnnouncementStreamConfig, load_config
from .handlers.announcement import AnnouncementHandler
from .health import HealthCheckServer
from .lifecycle import LifecycleController
from .message_router import MessageRouter
from .metrics import MetricsService
from .utils.deduplication import AnnouncementDeduplicator
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)


class AnnouncementStreamService:
    """Wires the stream controller, consumer, health and metrics together."""

    def __init__(self, config: AnnouncementStreamConfig):
        self.config = config
        self._shutdown_event = asyncio.Event()

        self.notifier = DingTalkNotifier(config.notifier)
        self.handler = AnnouncementHandler(
            self.notifier,
            AnnouncementDeduplicator(
                window_seconds=config.deduplication.window_seconds,
                max_entries=config.deduplication.max_entries,
            ),
            announcement_url=config.notifier.announcement_url,
        )
        self.controller = LifecycleController(
            config.binance,
            MessageRouter(self.handler),
            stream_config=config.stream,
            retry_config=config.retry,
        )
        self.health_server: Optional[HealthCheckServer] = None
        if config.health.enabled:
            self.health_server = HealthCheckServer(self, config.health.host, config.health.port)
        self.metrics = MetricsService(config.metrics, self.controller)

        logger.info("Announcement Stream Service initialized")

    async def start(self) -> int:
        """Run until a shutdown signal or terminal stream failure; returns exit code."""
        logger.info("Starting Announcement Stream Service")
        self._setup_signal_handlers()

        await self.notifier.start()
        if self.health_server:
            await self.health_server.start()
        await self.metrics.start()
        await self.controller.start()

        shutdown = asyncio.create_task(self._shutdown_event.wait())
        terminated = asyncio.create_task(self.controller.terminated.wait())
        done, pending = await asyncio.wait(
            {shutdown, terminated}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()

        exit_code = 1 if terminated in done else 0

        logger.info("Shutting down Announcement Stream Service")
        await self.controller.stop()
        await self.metrics.stop()
        if self.health_server:
            await self.health_server.stop()
        await self.notifier.close()

        logger.info("Announcement Stream Service stopped")
        return exit_code

    def request_shutdown(self):
        self._shutdown_event.set()

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except NotImplementedError:
                # Windows event loops
                signal.signal(signum, lambda s, f: self._on_signal(s))

    def _on_signal(self, signum):
        logger.info(f"Received signal {signum}, initiating shutdown")
        self.request_shutdown()

    def health_check(self) -> dict:
        status = self.controller.get_status()
        return {
            "service": "announcement-stream",
            "status": "healthy" if status["is_healthy"] else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "stream": status,
                "handler": dict(self.handler.stats),
                "notifier": dict(self.notifier.stats),
                "deduplication": self.handler.deduplicator.get_stats(),
            }
        }


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")
    config = load_config(config_file)
    setup_logging(config.logging)

    service = AnnouncementStreamService(config)
    try:
        exit_code = await service.start()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        exit_code = 1
    sys.exit(exit_code)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
