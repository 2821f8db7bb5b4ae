"""Database utility functions."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# SQLite error fragments that clear up once the other writer finishes
LOCK_ERRORS = (
    "database is locked",
    "database table is locked",
    "database is busy",
)


def is_lock_error(exc: BaseException) -> bool:
    """True if `exc` is SQLite lock contention rather than a real failure."""
    error_str = str(exc).lower()
    return any(msg in error_str for msg in LOCK_ERRORS)


async def retry_on_lock(
    coro_func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.1,
) -> T:
    """Retry a database operation on lock contention with exponential backoff.

    Args:
        coro_func: Async function to call (should be a callable that returns a coroutine)
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds (doubles with each retry)

    Returns:
        The result of the coroutine function

    Raises:
        OperationalError: If all retries fail or the error is not a lock error
    """
    for attempt in range(max_retries):
        try:
            return await coro_func()
        except OperationalError as e:
            if not is_lock_error(e) or attempt == max_retries - 1:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(f"Database locked, retrying in {delay}s (attempt {attempt + 1}/{max_retries})")
            await asyncio.sleep(delay)
    raise RuntimeError("retry_on_lock called with max_retries < 1")
