"""Tests for Prometheus metrics export."""

from unittest.mock import Mock

import pytest
from prometheus_client import CollectorRegistry

from feed_relay.services.announcement_stream.src.config.settings import MetricsConfig
from feed_relay.services.announcement_stream.src.metrics import MetricsService


def status(**overrides):
    base = {
        'state': 'subscribed',
        'is_connected': True,
        'is_healthy': True,
        'reconnect_attempts': 0,
        'stats': {
            'opens': 3,
            'reconnects': 2,
            'rotations': 1,
            'messages_received': 40,
            'data_messages_processed': 12,
            'errors': 2,
            'connection_durations': [10.0, 3600.0],
        },
    }
    base.update(overrides)
    return base


@pytest.mark.unit
class TestMetricsService:

    def test_refresh_from_controller(self):
        controller = Mock()
        controller.get_status.return_value = status()
        registry = CollectorRegistry()
        metrics = MetricsService(MetricsConfig(), controller, registry=registry)

        metrics.refresh()

        assert registry.get_sample_value('announcement_stream_connected') == 1
        assert registry.get_sample_value('announcement_stream_healthy') == 1
        assert registry.get_sample_value('announcement_stream_total', {'counter': 'opens'}) == 3
        assert registry.get_sample_value('announcement_stream_total', {'counter': 'errors'}) == 2
        assert registry.get_sample_value(
            'announcement_stream_last_connection_duration_seconds'
        ) == 3600.0

    def test_refresh_unhealthy(self):
        registry = CollectorRegistry()
        metrics = MetricsService(MetricsConfig(), Mock(), registry=registry)

        metrics.refresh(status(is_connected=False, is_healthy=False, reconnect_attempts=4))

        assert registry.get_sample_value('announcement_stream_connected') == 0
        assert registry.get_sample_value('announcement_stream_healthy') == 0
        assert registry.get_sample_value('announcement_stream_reconnect_attempts') == 4

    def test_separate_registries(self):
        MetricsService(MetricsConfig(), Mock())
        MetricsService(MetricsConfig(), Mock())

    @pytest.mark.asyncio
    async def test_disabled_start_is_noop(self):
        metrics = MetricsService(MetricsConfig(enabled=False), Mock())
        await metrics.start()
        assert metrics._task is None
        await metrics.stop()
