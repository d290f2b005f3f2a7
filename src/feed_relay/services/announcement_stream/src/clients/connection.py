"""Single physical websocket connection to the Binance announcement stream."""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..config.settings import StreamConfig
from ..events import (
    Event,
    FrameReceived,
    TransportClosed,
    TransportError,
    TransportOpened,
    describe_close_code,
)

logger = logging.getLogger(__name__)


class ConnectionSession:
    """
    Owns exactly one websocket connection.

    Transport activity is reported through `on_event` as session-tagged
    events: TransportOpened once the handshake completes, FrameReceived per
    inbound frame, TransportError for unexpected reader failures and exactly
    one TransportClosed once an opened connection ends for any reason.
    """

    def __init__(
        self,
        session_id: int,
        api_key: str,
        on_event: Callable[[Event], None],
        stream_config: Optional[StreamConfig] = None,
        proxy_url: Optional[str] = None,
        connect: Callable[..., Any] = websockets.connect,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = session_id
        self.api_key = api_key
        self.on_event = on_event
        self.stream_config = stream_config or StreamConfig()
        self.proxy_url = proxy_url
        self._connect = connect
        self._clock = clock

        self.websocket = None
        self.opened_at: Optional[float] = None
        self.last_probe_sent_at: Optional[float] = None
        self.last_probe_ack_at: Optional[float] = None
        self.subscribed = False

        self._reader_task: Optional[asyncio.Task] = None
        self._closed_emitted = False

    @property
    def is_open(self) -> bool:
        return self.websocket is not None and not self._closed_emitted

    def duration(self) -> Optional[float]:
        if self.opened_at is None:
            return None
        return self._clock() - self.opened_at

    async def open(self, url: str):
        """Establish the transport; raises whatever the transport raises."""
        headers = {'X-MBX-APIKEY': self.api_key}
        options: Dict[str, Any] = {
            'additional_headers': headers,
            'ping_interval': None,  # liveness is driven by LivenessMonitor
            'close_timeout': self.stream_config.close_timeout_seconds,
            'max_size': self.stream_config.max_message_size,
        }
        if self.proxy_url:
            options['proxy'] = self.proxy_url
            logger.info(f"Connecting through proxy {self.proxy_url}")

        self.websocket = await self._connect(url, **options)
        self.opened_at = self._clock()
        logger.info(f"Session {self.session_id}: websocket connection established")

        self.on_event(TransportOpened(self.session_id))
        self._reader_task = asyncio.create_task(self._read_loop())
        return self

    async def _read_loop(self):
        try:
            async for message in self.websocket:
                self.on_event(FrameReceived(self.session_id, raw=message))
        except ConnectionClosed:
            pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Session {self.session_id}: reader failed: {e}", exc_info=True)
            self.on_event(TransportError(self.session_id, e))
        finally:
            self._emit_closed()

    def _emit_closed(self, code: Optional[int] = None, reason: str = ''):
        if self._closed_emitted or self.websocket is None:
            return
        self._closed_emitted = True

        code = getattr(self.websocket, 'close_code', None) or code
        reason = getattr(self.websocket, 'close_reason', None) or reason
        logger.info(
            f"Session {self.session_id}: connection closed: {code} - {describe_close_code(code)}"
            + (f" ({reason})" if reason else "")
        )
        self.on_event(TransportClosed(self.session_id, code=code, reason=reason))

    async def send(self, frame: Dict[str, Any]):
        if not self.is_open:
            raise ConnectionError(f"Session {self.session_id} is not open")
        await self.websocket.send(json.dumps(frame))

    async def subscribe(self, topic: str):
        await self.send({'command': 'SUBSCRIBE', 'value': topic})
        logger.info(f"Session {self.session_id}: subscribing to {topic}")

    async def unsubscribe(self, topic: str):
        await self.send({'command': 'UNSUBSCRIBE', 'value': topic})
        logger.info(f"Session {self.session_id}: unsubscribing from {topic}")

    async def probe(self) -> bool:
        """Send an empty ping without waiting for the pong."""
        if not self.is_open:
            return False
        try:
            pong_waiter = await self.websocket.ping()
        except ConnectionClosed:
            logger.debug(f"Session {self.session_id}: ping skipped, connection closing")
            return False

        self.last_probe_sent_at = self._clock()
        pong_waiter.add_done_callback(self._on_pong)
        logger.debug(f"Session {self.session_id}: PING sent")
        return True

    def _on_pong(self, future: asyncio.Future):
        if future.cancelled() or future.exception() is not None:
            return
        self.last_probe_ack_at = self._clock()
        logger.debug(f"Session {self.session_id}: PONG received")

    async def close(self, code: int = 1000, reason: str = ''):
        """Graceful close; safe to call more than once."""
        if self.websocket is None:
            return

        try:
            await self.websocket.close(code, reason)
        except Exception as e:
            logger.debug(f"Session {self.session_id}: close raised {e}")

        if self._reader_task is not None and not self._reader_task.done():
            await asyncio.wait(
                [self._reader_task], timeout=self.stream_config.close_timeout_seconds
            )
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

        self._emit_closed(code, reason)
