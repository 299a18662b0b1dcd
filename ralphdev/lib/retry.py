"""
Retry executor with capped exponential backoff.

Stateless and reusable: any component that talks to something which can fail
transiently (mostly the local file system) wraps the call in with_retry().

    data = with_retry(lambda: path.read_text(), max_attempts=5)

The delay before attempt n+1 is min(initial_delay * multiplier ** (n - 1), max_delay).
"""

import errno
import functools
import logging
import time
from typing import Callable, TypeVar

from ralphdev.lib import constants

logger = logging.getLogger(__name__)

T = TypeVar("T")

# errno values worth retrying on local files
TRANSIENT_ERRNOS = frozenset({errno.EBUSY, errno.EAGAIN, errno.ETIMEDOUT, errno.EINTR})


def is_transient_os_error(exc: BaseException) -> bool:
    """True for OSErrors that usually clear up on their own (busy, try-again)."""
    return isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS


def backoff_delay(attempt: int, initial_delay: float, max_delay: float,
                  backoff_multiplier: float) -> float:
    """Delay to wait after failed attempt number `attempt` (1-based)."""
    return min(initial_delay * backoff_multiplier ** (attempt - 1), max_delay)


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = constants.RETRY_MAX_ATTEMPTS,
    initial_delay: float = constants.RETRY_INITIAL_DELAY,
    max_delay: float = constants.RETRY_MAX_DELAY,
    backoff_multiplier: float = constants.RETRY_BACKOFF_MULTIPLIER,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    is_retryable: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run `operation`, retrying failures with exponential backoff.

    Args:
        operation: Zero-argument callable to execute
        max_attempts: Total attempts including the first one
        initial_delay: Seconds to wait after the first failure
        max_delay: Upper bound for any single wait
        backoff_multiplier: Growth factor between waits
        retry_on: Exception types eligible for retry
        is_retryable: Optional finer-grained predicate applied to eligible errors
        sleep: Injected for tests

    Returns:
        Whatever `operation` returns on its first successful attempt

    Raises:
        The last error once attempts are exhausted, or any non-retryable
        error immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return operation()
        except retry_on as e:
            if is_retryable is not None and not is_retryable(e):
                raise
            if attempt >= max_attempts:
                logger.debug(f"[RETRY] giving up after {attempt} attempt(s): {e}")
                raise
            delay = backoff_delay(attempt, initial_delay, max_delay, backoff_multiplier)
            logger.debug(f"[RETRY] attempt {attempt}/{max_attempts} failed ({e}), retrying in {delay:.3f}s")
            sleep(delay)
            attempt += 1


def retrying(**retry_kwargs):
    """Decorator form of with_retry()."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return with_retry(lambda: func(*args, **kwargs), **retry_kwargs)
        return wrapper
    return decorator
