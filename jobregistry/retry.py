"""
Retry logic with exponential backoff for handling transient failures.

Provides a decorator for automatically retrying operations that may fail
because the database is briefly locked, unreachable or timing out. Only
idempotent operations (reads, conditional updates, retention deletes)
should be wrapped.
"""

import time
import functools
from typing import Callable, Type, Tuple, Optional


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    reraise: bool = False,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        reraise: Re-raise the last exception instead of wrapping it in
            RetryError once attempts are exhausted

    Example:
        @exponential_backoff(max_retries=3, exceptions=(TransientStoreError,))
        def reclaim():
            return registry.cancel_orphaned_jobs(active_ids)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    # Don't sleep after the last attempt
                    if attempt >= max_retries:
                        if reraise:
                            raise
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)

                    time.sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


TRANSIENT_KEYWORDS = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "lock wait timeout",
    "could not serialize access",
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "server closed the connection",
    "lost connection",
    "temporary failure",
)


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if a database exception is likely transient and should be retried.

    Args:
        exception: Exception to check

    Returns:
        True if error is likely transient (lock contention, timeout, dropped connection)
    """
    # SQLAlchemy flags dropped DBAPI connections explicitly
    if getattr(exception, "connection_invalidated", False):
        return True

    error_str = str(exception).lower()
    return any(keyword in error_str for keyword in TRANSIENT_KEYWORDS)
