"""
Retry with backoff for calls to external services.
"""

import logging
import random
import time
from typing import Callable, TypeVar

from .errors import InputError, InvalidResponseError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Errors that will not go away by asking again
NON_RETRYABLE: tuple[type[BaseException], ...] = (InputError, InvalidResponseError)


def backoff_delay(
    attempt: int,
    base_delay: float,
    backoff: str = "fixed",
    jitter: float = 0.0,
    rng: random.Random | None = None,
) -> float:
    """Delay to wait after a failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        base_delay: Seconds for the first retry
        backoff: 'fixed', 'linear' (base * attempt) or 'exponential' (base * 2^(attempt-1))
        jitter: Extra random seconds added, uniform in [0, jitter]
        rng: Random source (for deterministic tests)

    Returns:
        Seconds to sleep before the next attempt
    """
    if backoff == "fixed":
        delay = base_delay
    elif backoff == "linear":
        delay = base_delay * attempt
    elif backoff == "exponential":
        delay = base_delay * (2 ** (attempt - 1))
    else:
        raise ValueError(f"Unknown backoff strategy: {backoff!r}")

    if jitter > 0:
        delay += (rng or random).uniform(0, jitter)
    return delay


def retry_call(
    fn: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 2.0,
    backoff: str = "fixed",
    jitter: float = 0.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    give_up_on: tuple[type[BaseException], ...] = NON_RETRYABLE,
    should_continue: Callable[[], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
    description: str = "call",
) -> T:
    """Call fn until it succeeds or attempts run out.

    Args:
        fn: Zero-argument callable to invoke
        attempts: Maximum number of calls (>= 1)
        base_delay: Seconds between attempts (scaled by backoff)
        backoff: 'fixed', 'linear' or 'exponential'
        jitter: Random extra seconds per wait
        retry_on: Exception types that trigger another attempt
        give_up_on: Exception types re-raised immediately
        should_continue: Checked before every retry; returning False re-raises
            the last error (used for cooperative cancellation)
        sleep: Sleep function (injectable for tests)
        rng: Random source for jitter
        description: Label for log messages

    Returns:
        Whatever fn returns

    Raises:
        The last exception raised by fn once attempts are exhausted
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except give_up_on:
            raise
        except retry_on as e:
            if attempt >= attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            if should_continue is not None and not should_continue():
                logger.info(f"{description} cancelled after attempt {attempt}")
                raise

            delay = backoff_delay(attempt, base_delay, backoff, jitter, rng)
            logger.warning(
                f"{description} attempt {attempt}/{attempts} failed: {e}, "
                f"retrying in {delay:.1f}s..."
            )
            sleep(delay)

    raise AssertionError("unreachable")
