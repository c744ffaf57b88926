import logging
import random
import time
from typing import Callable, TypeVar

from .exceptions import RateLimitError, ServerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 2.0 # seconds
JITTER_MIN = 0.8
JITTER_MAX = 1.2


def is_retryable(error: Exception) -> bool:
    """Only rate limiting and server-side failures are worth another attempt."""
    return isinstance(error, (RateLimitError, ServerError))


def backoff_delay(attempt: int, initial_delay: float = DEFAULT_INITIAL_DELAY) -> float:
    """
    Delay before retry number `attempt` (1-based).

    initial_delay * 2^(attempt-1), scaled by a jitter factor in [0.8, 1.2).
    """
    jitter = JITTER_MIN + random.random() * (JITTER_MAX - JITTER_MIN)
    return initial_delay * (2 ** (attempt - 1)) * jitter


def retry_with_backoff(
    operation: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    should_retry: Callable[[Exception], bool] = is_retryable,
    label: str = "request",
) -> T:
    """
    Calls `operation` until it succeeds, retrying up to `max_retries` times.

    Errors rejected by `should_retry` propagate immediately. Once the retries
    are used up the last error is re-raised unchanged.
    """
    retries = 0
    while True:
        try:
            return operation()
        except Exception as e:
            retries += 1
            if retries > max_retries or not should_retry(e):
                raise
            delay = backoff_delay(retries, initial_delay)
            logger.warning(f"{label} failed with {type(e).__name__}: {e}. Retrying in {delay:.2f}s (attempt {retries}/{max_retries})")
            time.sleep(delay)
