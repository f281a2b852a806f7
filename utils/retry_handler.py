"""
Backoff retry helpers for awaitable operations (navigation, page fetches).
"""
import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delay(
    attempt: int,
    base_delay: float,
    exponential_base: float = 1.0,
    max_delay: float = 60.0
) -> float:
    """
    Delay before the retry that follows ``attempt`` (1-based).

    An ``exponential_base`` of 1.0 gives a fixed delay.
    """
    return min(base_delay * (exponential_base ** (attempt - 1)), max_delay)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 2.0,
    exponential_base: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    description: str = "operation"
) -> T:
    """
    Await ``func()`` until it succeeds or ``max_attempts`` is reached.

    Args:
        func: Zero-argument callable returning an awaitable
        max_attempts: Maximum number of attempts (including the first)
        base_delay: Delay in seconds before the first retry
        exponential_base: Growth factor for later delays (1.0 = fixed)
        exceptions: Tuple of exceptions to catch and retry
        description: Label used in log messages

    Returns:
        Result of the awaited call

    Raises:
        The last exception once all attempts have failed
    """
    attempt = 0
    while True:
        try:
            return await func()
        except exceptions as e:
            attempt += 1
            if attempt >= max_attempts:
                logger.error(f"Max retries ({max_attempts}) reached for {description}: {e}")
                raise

            delay = backoff_delay(attempt, base_delay, exponential_base)
            logger.warning(
                f"⚠️  Attempt {attempt}/{max_attempts} failed for {description}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)

