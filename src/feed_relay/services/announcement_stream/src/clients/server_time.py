"""Binance server time lookup used as the signing reference timestamp."""

import asyncio
import logging
import time
from typing import Callable, Optional

import aiohttp

logger = logging.getLogger(__name__)


def local_time_ms() -> int:
    return int(time.time() * 1000)


class ServerClock:
    """
    Reference clock for connection signing.

    Fetches `serverTime` from the REST API so signatures tolerate drift
    between the local clock and the exchange. Any failure degrades to the
    local wall clock; it never raises.
    """

    TIME_ENDPOINT = '/api/v3/time'

    def __init__(
        self,
        rest_base_url: str,
        proxy_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        local_clock: Callable[[], int] = local_time_ms,
    ):
        self.url = f"{rest_base_url.rstrip('/')}{self.TIME_ENDPOINT}"
        self.proxy_url = proxy_url
        self.timeout_seconds = timeout_seconds
        self._local_clock = local_clock
        self.fallback_count = 0

    async def _fetch(self) -> int:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.url, proxy=self.proxy_url) as response:
                response.raise_for_status()
                data = await response.json()
                return int(data['serverTime'])

    async def now_ms(self) -> int:
        """Server time in milliseconds, or local time if the lookup fails."""
        try:
            server_time = await self._fetch()
            logger.debug(f"Fetched Binance server time: {server_time}")
            return server_time
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError, ValueError) as e:
            self.fallback_count += 1
            logger.warning(f"Failed to fetch server time, using local time: {e}")
            return self._local_clock()
