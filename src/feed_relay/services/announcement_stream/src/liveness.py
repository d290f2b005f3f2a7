"""Periodic keep-alive probes for an active session."""

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """
    Sends a ping every `interval` seconds while a session is subscribed.

    Probe replies are only observed. When `ack_timeout` is positive,
    `on_stale` fires once the oldest unanswered ping is older than that,
    however many pings were sent after it. Otherwise the transport's own
    close/error events are the sole failure signal.
    """

    def __init__(
        self,
        interval: float = 30.0,
        ack_timeout: float = 0.0,
        on_stale: Optional[Callable[[int], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.interval = interval
        self.ack_timeout = ack_timeout
        self.on_stale = on_stale
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.session = None
        self.probes_sent = 0
        # send time of the oldest ping not yet answered by a PONG
        self._unacked_since: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, session):
        self.stop()
        self.session = session
        self._task = asyncio.create_task(self._run(session))
        logger.info(f"Liveness probes started (every {self.interval:.0f}s)")

    def stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.session = None

    async def _run(self, session):
        self._unacked_since = None

        while True:
            await self._sleep(self.interval)

            if self.ack_timeout > 0 and self._is_stale(session):
                logger.warning(
                    f"Session {session.session_id}: no PONG within "
                    f"{self.ack_timeout:.0f}s of an unanswered PING"
                )
                if self.on_stale is not None:
                    self.on_stale(session.session_id)
                return

            try:
                if await session.probe():
                    self.probes_sent += 1
                    if self._unacked_since is None:
                        self._unacked_since = session.last_probe_sent_at
            except Exception as e:
                logger.warning(f"Session {session.session_id}: probe failed: {e}")

    def _is_stale(self, session) -> bool:
        if self._unacked_since is None:
            return False
        acked = session.last_probe_ack_at
        if acked is not None and acked >= self._unacked_since:
            sent = session.last_probe_sent_at
            self._unacked_since = sent if sent is not None and sent > acked else None
            if self._unacked_since is None:
                return False
        return self._clock() - self._unacked_since > self.ack_timeout
