"""
Retry with exponential backoff for retryable upstream failures.

Rate-limit responses from the RPC proxy are expected under load; they are
retried with backoff (honouring ``retry_after`` when the server sent one)
instead of being treated as fatal.
"""
import asyncio
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from dao_radar.exceptions import DaoRadarError, RateLimitError, classify_exception
from dao_radar.utils.logger import logger

T = TypeVar("T")


def calculate_delay(attempt: int, base_delay: float, max_delay: float, error: Exception = None) -> float:
    """Exponential backoff with jitter, floored at the server's retry_after."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    delay = delay * (0.5 + random.random() / 2)
    retry_after = getattr(error, "retry_after", None)
    if retry_after:
        delay = max(delay, min(float(retry_after), max_delay))
    return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: Tuple[Type[DaoRadarError], ...] = (RateLimitError,),
    name: str = "operation",
) -> T:
    """
    Await ``func()`` and retry it when it fails with one of ``retry_on``.

    Errors are normalised through ``classify_exception`` first, so raw
    transport errors are matched by their DaoRadarError class.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            error = classify_exception(e)
            if not isinstance(error, retry_on) or attempt >= max_retries:
                if error is e:
                    raise
                raise error from e
            delay = calculate_delay(attempt, base_delay, max_delay, error)
            logger.warning(
                f"[Retry] {name} attempt {attempt + 1} failed: {error.message}. Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
            attempt += 1
