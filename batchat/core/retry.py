"""
Bounded retry with exponential backoff for transient store failures.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from batchat.config import get_settings
from batchat.core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    description: str = "store operation",
) -> T:
    """
    Run ``operation`` and retry it while it raises StoreUnavailableError.

    Any other exception is terminal and propagates on the first raise.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        attempts: Total attempts including the first (default from settings)
        base_delay: Delay before the first retry, doubled each time
        max_delay: Upper bound for a single delay
        description: Used in log messages

    Returns:
        Whatever ``operation`` returns

    Raises:
        StoreUnavailableError: the last transient failure, once attempts run out
    """
    settings = get_settings()
    attempts = max(1, attempts or settings.store_retry_attempts)
    delay = settings.store_retry_base_delay if base_delay is None else base_delay
    ceiling = settings.store_retry_max_delay if max_delay is None else max_delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except StoreUnavailableError as e:
            if attempt == attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            sleep_for = min(ceiling, delay * (2 ** (attempt - 1)))
            sleep_for *= random.uniform(0.5, 1.0)
            logger.warning(
                f"{description} unavailable (attempt {attempt}/{attempts}), "
                f"retrying in {sleep_for:.3f}s"
            )
            await asyncio.sleep(sleep_for)

    raise AssertionError("unreachable")
