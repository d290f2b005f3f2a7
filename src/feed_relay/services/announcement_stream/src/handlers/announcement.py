"""Turns announcement payloads into deduplicated notifications."""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from ..clients.notifier import DingTalkNotifier
from ..utils.deduplication import AnnouncementDeduplicator

logger = logging.getLogger(__name__)

UTC8 = timezone(timedelta(hours=8))


@dataclass
class Announcement:
    """Announcement fields used for notifications."""
    record_id: str
    title: str
    catalog_name: str
    publish_date: Optional[int]
    raw: Dict[str, Any]

    @property
    def publish_time(self) -> str:
        if self.publish_date is None:
            return datetime.now(UTC8).strftime('%Y-%m-%d %H:%M:%S')
        return datetime.fromtimestamp(self.publish_date / 1000, UTC8).strftime('%Y-%m-%d %H:%M:%S')


def _message_hash(message: Dict[str, Any]) -> str:
    return hashlib.md5(json.dumps(message, sort_keys=True).encode('utf-8')).hexdigest()


def parse_announcement(message: Dict[str, Any]) -> Optional[Announcement]:
    """
    Extract the announcement from a DATA frame.

    The frame's `data` field is itself a JSON string. Frames without a
    non-empty string title are not announcements and yield None.
    """
    data = message.get('data')
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse announcement data: {e}")
            return None
    if not isinstance(data, dict):
        return None

    title = data.get('title')
    if not isinstance(title, str) or not title.strip():
        return None
    title = title.strip()

    publish_date = data.get('publishDate')
    try:
        publish_date = int(publish_date) if publish_date is not None else None
    except (TypeError, ValueError):
        publish_date = None

    if publish_date is not None:
        record_id = f"{title}_{publish_date}"
    else:
        record_id = _message_hash(message)

    return Announcement(
        record_id=record_id,
        title=title,
        catalog_name=data.get('catalogName') or '',
        publish_date=publish_date,
        raw=data,
    )


class AnnouncementHandler:
    """Consumer callback for data payloads from the announcement stream."""

    def __init__(
        self,
        notifier: DingTalkNotifier,
        deduplicator: Optional[AnnouncementDeduplicator] = None,
        announcement_url: str = "https://www.binance.com/en/support/announcement",
    ):
        self.notifier = notifier
        self.deduplicator = deduplicator or AnnouncementDeduplicator()
        self.announcement_url = announcement_url
        self.stats = {
            'received': 0,
            'ignored': 0,
            'duplicates': 0,
            'notified': 0,
            'notify_failures': 0,
            'last_announcement_time': None
        }

    def format_message(self, announcement: Announcement) -> str:
        return (
            f"📢 Announcement: {announcement.title}\n\n"
            f"🏷️ Category: {announcement.catalog_name or 'Uncategorized'}\n"
            f"📅 Published: {announcement.publish_time} (UTC+8)\n"
            f"🔗 Details: {self.announcement_url}"
        )

    async def __call__(self, message: Dict[str, Any]):
        self.stats['received'] += 1

        announcement = parse_announcement(message)
        if announcement is None:
            self.stats['ignored'] += 1
            logger.info("Payload carries no announcement content, skipping")
            return

        if not self.deduplicator.is_unique(announcement.record_id):
            self.stats['duplicates'] += 1
            logger.info(f"Announcement already processed, skipping: {announcement.record_id}")
            return

        self.stats['last_announcement_time'] = time.time()
        logger.info(f"New announcement: {announcement.title}")

        if await self.notifier.send(self.format_message(announcement)):
            self.stats['notified'] += 1
        else:
            self.stats['notify_failures'] += 1
