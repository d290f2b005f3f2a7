"""DingTalk robot webhook notifier."""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..config.settings import NotifierConfig
from ..utils.retry import exponential_backoff

logger = logging.getLogger(__name__)

# DingTalk robots are configured with a keyword; every message must contain it.
KEYWORD = '.'


class NotificationError(Exception):
    """Raised when the webhook rejects a message."""


class DingTalkNotifier:
    """Sends plain-text messages to a DingTalk robot webhook."""

    def __init__(self, config: NotifierConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        self.stats = {
            'sent': 0,
            'failed': 0
        }

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled and self.config.access_token)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            )

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None

    @staticmethod
    def build_payload(message: str) -> Dict[str, Any]:
        if KEYWORD not in message:
            message = f"{KEYWORD} {message}"
        return {
            'msgtype': 'text',
            'text': {'content': message},
            'at': {}
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        params = {'access_token': self.config.access_token}
        async with self.session.post(self.config.webhook_url, params=params, json=payload) as response:
            response.raise_for_status()
            result = await response.json(content_type=None)

        if result.get('errcode') != 0:
            raise NotificationError(
                f"DingTalk API error: {result.get('errmsg')} (code: {result.get('errcode')})"
            )
        return result

    async def send(self, message: str) -> bool:
        """Send one message; returns False after all retries fail."""
        if not self.enabled:
            logger.warning("Notifier not configured, skipping notification")
            return False

        await self.start()
        payload = self.build_payload(message)

        try:
            await exponential_backoff(
                lambda: self._post(payload),
                max_attempts=self.config.max_attempts,
                initial_delay=self.config.initial_backoff_seconds,
                max_delay=self.config.initial_backoff_seconds * 8,
                exceptions=(aiohttp.ClientError, asyncio.TimeoutError, NotificationError),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, NotificationError) as e:
            self.stats['failed'] += 1
            logger.error(f"Failed to deliver notification: {e}")
            return False

        self.stats['sent'] += 1
        return True
