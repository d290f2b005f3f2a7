"""Pytest configuration and shared fixtures."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from feed_relay.services.announcement_stream.src.config.settings import (
    BinanceConfig,
    RetryConfig,
    StreamConfig,
)
from feed_relay.services.announcement_stream.src.events import (
    FrameReceived,
    TransportClosed,
    TransportOpened,
)
from feed_relay.services.announcement_stream.src.lifecycle import LifecycleController
from feed_relay.services.announcement_stream.src.message_router import MessageRouter


SERVER_TIME_MS = 1700000000000


class FakeTimer:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not self.cancelled and not self.fired

    def fire(self):
        assert self.pending, "timer is no longer armed"
        self.fired = True
        self.callback(*self.args)


class FakeScheduler:
    """Stands in for loop.call_later; timers fire only when a test says so."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.pending]

    def fire_next(self) -> FakeTimer:
        timer = self.pending[0]
        timer.fire()
        return timer


class FixedServerClock:
    def __init__(self, value: int = SERVER_TIME_MS):
        self.value = value
        self.calls = 0

    async def now_ms(self) -> int:
        self.calls += 1
        return self.value


class FakeSession:
    """Scripted ConnectionSession: 'ok' opens, 'fail' raises, 'hang' never returns."""

    def __init__(self, session_id, on_event, outcome: str = 'ok', duration: float = 120.0):
        self.session_id = session_id
        self.on_event = on_event
        self.outcome = outcome
        self._duration = duration

        self.url: Optional[str] = None
        self.opened = False
        self.subscribed = False
        self.commands: List[Dict[str, Any]] = []
        self.close_calls: List[tuple] = []
        self.closed_emitted = False
        self.last_probe_sent_at = None
        self.last_probe_ack_at = None

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed_emitted

    def duration(self):
        return self._duration if self.opened else None

    async def open(self, url: str):
        self.url = url
        if self.outcome == 'fail':
            raise ConnectionRefusedError("connection refused")
        if self.outcome == 'hang':
            await asyncio.Event().wait()
        self.opened = True
        self.on_event(TransportOpened(self.session_id))
        return self

    async def subscribe(self, topic: str):
        self.commands.append({'command': 'SUBSCRIBE', 'value': topic})

    async def probe(self) -> bool:
        return True

    async def close(self, code: int = 1000, reason: str = ''):
        self.close_calls.append((code, reason))
        self.drop(code, reason)

    # test helpers

    def drop(self, code: int = 1006, reason: str = ''):
        if self.opened and not self.closed_emitted:
            self.closed_emitted = True
            self.on_event(TransportClosed(self.session_id, code=code, reason=reason))

    def emit(self, message):
        raw = message if isinstance(message, str) else json.dumps(message)
        self.on_event(FrameReceived(self.session_id, raw=raw))

    def ack(self, topic: str = 'com_announcement_en', success: bool = True):
        self.emit({
            'type': 'COMMAND',
            'subType': 'SUBSCRIBE',
            'data': 'SUCCESS' if success else 'FAILED',
            'code': topic,
        })


class FakeSessionFactory:
    def __init__(self, outcomes: Optional[List[str]] = None, default: str = 'ok'):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.sessions: List[FakeSession] = []

    def __call__(self, session_id, on_event):
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        session = FakeSession(session_id, on_event, outcome)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]


async def settle(rounds: int = 50):
    """Let queued events and spawned tasks run to quiescence."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def binance_config() -> BinanceConfig:
    return BinanceConfig(
        api_key='test-api-key',
        api_secret='test-api-secret',
        ws_base_url='wss://example.test/sapi/wss',
        topics=['com_announcement_en'],
    )


@pytest.fixture
def stream_config() -> StreamConfig:
    # Probes far in the future so no ping fires during a test
    return StreamConfig(ping_interval_seconds=3600, rotation_interval_seconds=82800)


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=10, initial_backoff_seconds=5.0, max_backoff_seconds=30.0)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def received() -> List[dict]:
    return []


@pytest.fixture
async def make_controller(binance_config, stream_config, retry_config, scheduler, received):
    controllers = []

    def _make(factory, handler=None, **overrides):
        controller = LifecycleController(
            binance_config,
            MessageRouter(handler if handler is not None else received.append),
            stream_config=overrides.pop('stream_config', stream_config),
            retry_config=overrides.pop('retry_config', retry_config),
            server_clock=FixedServerClock(),
            session_factory=factory,
            scheduler=scheduler,
            **overrides
        )
        controllers.append(controller)
        return controller

    yield _make

    for controller in controllers:
        await controller.stop()


@pytest.fixture
def sample_announcement_frame() -> Dict[str, Any]:
    return {
        'type': 'DATA',
        'topic': 'com_announcement_en',
        'data': json.dumps({
            'catalogId': 48,
            'catalogName': 'New Cryptocurrency Listing',
            'publishDate': 1700000000000,
            'title': 'Binance Will List Example (EXM)',
            'body': 'This is a body',
            'disclaimer': 'This is a disclaimer'
        })
    }
