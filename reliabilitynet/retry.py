"""
Retry logic with exponential backoff for transient store failures.

A unit of work that hits a lock, timeout or dropped connection is retried a
few times. Anything that is still failing afterwards, or that is not
transient at all, surfaces as StoreUnavailable.
"""

import functools
import time
from typing import Callable, Optional

from sqlalchemy.exc import DBAPIError, OperationalError

from .errors import StoreUnavailable


TRANSIENT_KEYWORDS = (
    'database is locked',
    'database table is locked',
    'deadlock',
    'could not serialize',
    'timeout',
    'timed out',
    'connection',
    'server closed',
    'temporarily unavailable',
)


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if a store exception is likely transient and worth retrying.

    Args:
        exception: Exception to check

    Returns:
        True for operational errors that mention locking, timeouts or connections
    """
    if isinstance(exception, DBAPIError) and exception.connection_invalidated:
        return True
    if not isinstance(exception, OperationalError):
        return False
    error_str = str(exception).lower()
    return any(keyword in error_str for keyword in TRANSIENT_KEYWORDS)


def retry_transient(
    max_retries: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying a store unit of work with exponential backoff.

    The wrapped function must be safe to re-run from the start, which holds
    for functions that open, commit and close their own session.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @retry_transient(max_retries=3)
        def resolve(self, phone, email):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except DBAPIError as e:
                    if not is_transient_error(e):
                        raise StoreUnavailable(f"Store error: {e.__class__.__name__}") from e

                    if attempt >= max_retries:
                        raise StoreUnavailable(
                            f"Store unavailable after {max_retries + 1} attempts"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)
                    time.sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator
