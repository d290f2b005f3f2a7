"""Deduplication of announcements already forwarded."""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)


class AnnouncementDeduplicator:
    """
    In-memory record of announcement ids seen within a time window.

    When the cache grows past `max_entries` the older half is evicted, so
    memory stays bounded for a long-running process. Nothing is persisted;
    a restart starts with an empty cache.
    """

    def __init__(
        self,
        window_seconds: int = 24 * 60 * 60,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self._clock = clock

        # record_id -> first seen time, in insertion order
        self._seen: "OrderedDict[str, float]" = OrderedDict()

        self.stats = {
            'total_checks': 0,
            'duplicates_found': 0,
            'unique_records': 0,
            'records_evicted': 0
        }

        logger.info(
            f"AnnouncementDeduplicator initialized: window={window_seconds}s, "
            f"max_entries={max_entries}"
        )

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, record_id: str) -> bool:
        seen_at = self._seen.get(record_id)
        return seen_at is not None and self._clock() - seen_at < self.window_seconds

    def is_unique(self, record_id: str) -> bool:
        """
        Check a record id and remember it.

        Returns:
            True the first time an id is seen within the window, False for
            repeats.
        """
        self.stats['total_checks'] += 1

        if record_id in self:
            self.stats['duplicates_found'] += 1
            logger.debug(f"Duplicate announcement: {record_id}")
            return False

        self._seen.pop(record_id, None)
        self._seen[record_id] = self._clock()
        self.stats['unique_records'] += 1

        if len(self._seen) > self.max_entries:
            self._evict_oldest_half()
        return True

    def _evict_oldest_half(self):
        to_remove = len(self._seen) // 2
        for _ in range(to_remove):
            self._seen.popitem(last=False)
        self.stats['records_evicted'] += to_remove
        logger.info(f"Deduplication cache trimmed to {len(self._seen)} entries")

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, 'tracked_records': len(self._seen)}
