"""Tests for retry utilities."""

from unittest.mock import AsyncMock

import pytest

from feed_relay.services.announcement_stream.src.utils.retry import (
    backoff_delay,
    exponential_backoff,
)


@pytest.mark.unit
class TestBackoffDelay:

    def test_doubles_then_caps(self):
        assert [backoff_delay(n, 5, 30) for n in range(1, 6)] == [5, 10, 20, 30, 30]

    def test_rejects_zero_attempt(self):
        with pytest.raises(ValueError):
            backoff_delay(0, 5, 30)


@pytest.mark.unit
class TestExponentialBackoff:

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[OSError('a'), OSError('b'), 'ok'])
        sleep = AsyncMock()

        result = await exponential_backoff(func, max_attempts=3, initial_delay=1.0, sleep=sleep)

        assert result == 'ok'
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error(self):
        func = AsyncMock(side_effect=OSError('down'))
        with pytest.raises(OSError, match='down'):
            await exponential_backoff(func, max_attempts=2, sleep=AsyncMock())
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_unlisted_exception_not_retried(self):
        func = AsyncMock(side_effect=KeyError('x'))
        with pytest.raises(KeyError):
            await exponential_backoff(func, exceptions=(OSError,), sleep=AsyncMock())
        assert func.await_count == 1
