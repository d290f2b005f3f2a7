"""Tests for health check endpoints."""

import json
from unittest.mock import Mock

import pytest

from feed_relay.services.announcement_stream.src.health import HealthCheckHandler, create_app


def service_with(status, stream_state):
    service = Mock()
    service.health_check.return_value = {
        'service': 'announcement-stream',
        'status': status,
        'components': {'stream': {'state': stream_state}},
    }
    return service


@pytest.mark.unit
class TestHealthCheckHandler:

    @pytest.mark.asyncio
    async def test_healthy(self):
        handler = HealthCheckHandler(service_with('healthy', 'subscribed'))
        response = await handler.health(Mock())
        assert response.status == 200
        assert json.loads(response.text)['status'] == 'healthy'

    @pytest.mark.asyncio
    async def test_unhealthy_returns_503(self):
        handler = HealthCheckHandler(service_with('unhealthy', 'reconnecting'))
        response = await handler.health(Mock())
        assert response.status == 503

    @pytest.mark.asyncio
    async def test_health_check_error(self):
        service = Mock()
        service.health_check.side_effect = RuntimeError('boom')
        response = await HealthCheckHandler(service).health(Mock())
        assert response.status == 503
        assert json.loads(response.text)['error'] == 'boom'

    @pytest.mark.asyncio
    @pytest.mark.parametrize('state,expected', [('subscribed', 200), ('authenticating', 503)])
    async def test_ready(self, state, expected):
        handler = HealthCheckHandler(service_with('healthy', state))
        response = await handler.ready(Mock())
        assert response.status == expected

    @pytest.mark.asyncio
    async def test_live(self):
        response = await HealthCheckHandler(Mock()).live(Mock())
        assert response.status == 200
        assert json.loads(response.text)['alive'] is True

    @pytest.mark.asyncio
    async def test_status_returns_stream_component(self):
        handler = HealthCheckHandler(service_with('unhealthy', 'reconnecting'))
        response = await handler.status(Mock())
        assert response.status == 200
        assert json.loads(response.text) == {'state': 'reconnecting'}

    @pytest.mark.asyncio
    async def test_ready_reports_state(self):
        handler = HealthCheckHandler(service_with('unhealthy', 'reconnecting'))
        body = json.loads((await handler.ready(Mock())).text)
        assert body['ready'] is False
        assert body['state'] == 'reconnecting'

    def test_routes(self):
        app = create_app(Mock())
        paths = {route.resource.canonical for route in app.router.routes()}
        assert {'/health', '/ready', '/live', '/status'} <= paths
