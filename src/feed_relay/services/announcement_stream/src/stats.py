"""Connection statistics for the announcement stream."""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

logger = logging.getLogger(__name__)

DURATION_HISTORY_SIZE = 10


class StatsCollector:
    """Passive counters; nothing here feeds back into connection control."""

    def __init__(self, min_viable_session_seconds: float = 30.0):
        self.min_viable_session_seconds = min_viable_session_seconds

        self.opens = 0
        self.reconnects = 0
        self.rotations = 0
        self.messages_received = 0
        self.data_messages_processed = 0
        self.errors = 0
        self.short_sessions = 0
        self.last_connect_time: Optional[datetime] = None
        self.connection_durations: Deque[float] = deque(maxlen=DURATION_HISTORY_SIZE)

    def record_open(self):
        self.opens += 1
        self.last_connect_time = datetime.now(timezone.utc)

    def record_reconnect(self):
        self.reconnects += 1

    def record_rotation(self):
        self.rotations += 1

    def record_message(self):
        self.messages_received += 1

    def record_data_processed(self):
        self.data_messages_processed += 1

    def record_error(self):
        self.errors += 1

    def record_session_closed(self, duration_seconds: float):
        """Append one duration sample; oldest sample is evicted past 10."""
        self.connection_durations.append(duration_seconds)
        logger.info(f"Connection lasted {duration_seconds:.0f}s")

        if duration_seconds < self.min_viable_session_seconds:
            self.short_sessions += 1
            logger.warning(
                f"Connection lasted only {duration_seconds:.1f}s "
                f"(< {self.min_viable_session_seconds:.0f}s), "
                "check credentials, proxy or network configuration"
            )

    def snapshot(self) -> Dict[str, Any]:
        return {
            'opens': self.opens,
            'reconnects': self.reconnects,
            'rotations': self.rotations,
            'messages_received': self.messages_received,
            'data_messages_processed': self.data_messages_processed,
            'errors': self.errors,
            'short_sessions': self.short_sessions,
            'last_connect_time': (
                self.last_connect_time.isoformat() if self.last_connect_time else None
            ),
            'connection_durations': list(self.connection_durations),
        }

    def log_summary(self):
        logger.info(
            f"Stream stats: opens={self.opens}, reconnects={self.reconnects}, "
            f"rotations={self.rotations}, received={self.messages_received}, "
            f"processed={self.data_messages_processed}, errors={self.errors}"
        )
