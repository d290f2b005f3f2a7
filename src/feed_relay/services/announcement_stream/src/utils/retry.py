"""Retry utilities with exponential backoff."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    """
    Delay before the given retry attempt.

    Args:
        attempt: 1-indexed retry attempt
        initial_delay: Delay used for the first attempt (seconds)
        max_delay: Upper bound for any delay (seconds)

    Returns:
        min(initial_delay * 2^(attempt-1), max_delay)
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(initial_delay * (2 ** (attempt - 1)), max_delay)


async def exponential_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: tuple = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Execute an async function with exponential backoff retry logic.

    Args:
        func: Async function to execute
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        exceptions: Tuple of exceptions to catch and retry on
        sleep: Awaitable sleep used between attempts

    Returns:
        Result of the function call

    Raises:
        The last exception encountered if all retries fail
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except exceptions as e:
            if attempt == max_attempts:
                logger.error(f"Function failed after {max_attempts} attempts: {e}")
                raise

            delay = backoff_delay(attempt, initial_delay, max_delay)
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.2f} seconds..."
            )
            await sleep(delay)

    raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
