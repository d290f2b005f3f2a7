"""Prometheus export of announcement stream status."""

import asyncio
import logging
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Gauge, start_http_server

from .config.settings import MetricsConfig

logger = logging.getLogger(__name__)

_COUNTERS = (
    'opens',
    'reconnects',
    'rotations',
    'messages_received',
    'data_messages_processed',
    'errors',
)


class MetricsService:
    """
    Mirrors `get_status()` of a LifecycleController into Prometheus gauges.

    Counters from the stream are cumulative already, so they are exported
    as gauges set to the current value on every refresh.
    """

    def __init__(self, config: MetricsConfig, controller, registry: Optional[CollectorRegistry] = None):
        self.config = config
        self.controller = controller
        self.registry = registry or CollectorRegistry()
        self._task: Optional[asyncio.Task] = None

        self.connected = Gauge(
            'announcement_stream_connected',
            'Connection status (1=connected, 0=disconnected)',
            registry=self.registry
        )
        self.healthy = Gauge(
            'announcement_stream_healthy',
            'Controller health (1=healthy, 0=unhealthy)',
            registry=self.registry
        )
        self.reconnect_attempts = Gauge(
            'announcement_stream_reconnect_attempts',
            'Consecutive failed connection attempts',
            registry=self.registry
        )
        self.totals = Gauge(
            'announcement_stream_total',
            'Cumulative stream counters',
            ['counter'],
            registry=self.registry
        )
        self.last_duration = Gauge(
            'announcement_stream_last_connection_duration_seconds',
            'Duration of the most recently closed connection',
            registry=self.registry
        )

    def refresh(self, status: Dict[str, Any] = None):
        status = status or self.controller.get_status()
        stats = status['stats']

        self.connected.set(1 if status['is_connected'] else 0)
        self.healthy.set(1 if status['is_healthy'] else 0)
        self.reconnect_attempts.set(status['reconnect_attempts'])
        for name in _COUNTERS:
            self.totals.labels(counter=name).set(stats.get(name, 0))
        if stats.get('connection_durations'):
            self.last_duration.set(stats['connection_durations'][-1])

    async def start(self):
        if not self.config.enabled:
            return
        start_http_server(self.config.port, registry=self.registry)
        logger.info(f"Prometheus metrics server started on port {self.config.port}")
        self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _refresh_loop(self):
        while True:
            try:
                self.refresh()
            except Exception as e:
                logger.error(f"Failed to refresh metrics: {e}")
            await asyncio.sleep(self.config.refresh_interval_seconds)
