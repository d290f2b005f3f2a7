"""Tests for AnnouncementStreamService wiring."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from feed_relay.services.announcement_stream.src.config.settings import build_config
from feed_relay.services.announcement_stream.src.main import AnnouncementStreamService


@pytest.fixture
def config(monkeypatch):
    monkeypatch.setenv('BINANCE_API_KEY', 'key')
    monkeypatch.setenv('BINANCE_SECRET_KEY', 'secret')
    return build_config({
        'binance': {'api_key': '${BINANCE_API_KEY}', 'api_secret': '${BINANCE_SECRET_KEY}'},
        'health': {'enabled': False},
    })


@pytest.mark.unit
class TestAnnouncementStreamService:

    @pytest.mark.asyncio
    async def test_health_check_before_start(self, config):
        service = AnnouncementStreamService(config)
        health = service.health_check()

        assert health['service'] == 'announcement-stream'
        assert health['status'] == 'healthy'
        assert health['components']['stream']['state'] == 'idle'
        assert set(health['components']) == {'stream', 'handler', 'notifier', 'deduplication'}

    @pytest.mark.asyncio
    async def test_shutdown_exit_code(self, config):
        service = AnnouncementStreamService(config)
        with patch.object(service.controller, 'start', AsyncMock()), \
                patch.object(service.controller, 'stop', AsyncMock()) as stop, \
                patch.object(service, '_setup_signal_handlers'):
            task = asyncio.create_task(service.start())
            await asyncio.sleep(0)
            service.request_shutdown()
            assert await task == 0
        stop.assert_awaited_once()
        assert service.notifier.session is None

    @pytest.mark.asyncio
    async def test_terminal_failure_exit_code(self, config):
        service = AnnouncementStreamService(config)
        with patch.object(service.controller, 'start', AsyncMock()), \
                patch.object(service.controller, 'stop', AsyncMock()), \
                patch.object(service, '_setup_signal_handlers'):
            task = asyncio.create_task(service.start())
            await asyncio.sleep(0)
            service.controller.terminated.set()
            assert await task == 1
