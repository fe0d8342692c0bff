"""
Retry helper for idempotent store steps.

Only StoreUnavailable is retried, with exponential backoff. Domain errors
(conflict, not found, ...) propagate on the first attempt.
"""

import time
import logging
from typing import Callable, TypeVar

from ..services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_idempotent(
    operation: Callable[[], T],
    description: str,
    attempts: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Run an idempotent store operation, retrying transient failures.

    Never use this for a step whose repetition could change the outcome
    (the middle writes of a swap).
    """
    last_error = None
    for attempt in range(max(attempts, 1)):
        try:
            return operation()
        except StoreUnavailable as e:
            last_error = e
            if attempt + 1 >= attempts:
                break
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(f"{description} failed ({e}), retrying in {delay:.2f}s")
            sleep(delay)

    logger.error(f"{description} failed after {attempts} attempts: {last_error}")
    raise last_error
