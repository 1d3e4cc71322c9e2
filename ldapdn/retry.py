"""
Retry helpers for transient directory failures.

The reconciliation engine never retries; callers decide what is safe to
repeat. Searches and connection attempts are, applying a change record is
not, since a partially applied record cannot be told apart from an unapplied
one.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type, Optional, Dict

logger = logging.getLogger(__name__)

TRANSIENT_PATTERNS = (
    'timeout',
    'timed out',
    "can't contact ldap server",
    'connection reset',
    'connection refused',
    'server is unavailable',
    'server is busy',
    'temporary failure',
)


class MaxRetriesExceeded(Exception):
    """Raised when every attempt of a retried call failed."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: Optional[Dict[str, Any]] = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None,
    operation_name: str = 'operation'
) -> Any:
    """
    Call a function, retrying on failure.

    Args:
        func: Function to call
        args: Positional arguments for func
        kwargs: Keyword arguments for func
        max_attempts: Attempts including the first call
        delay: Seconds to wait before the first retry
        backoff: Multiplier applied to delay after each retry
        exceptions: Exception types that may be retried
        should_retry: Optional predicate; exceptions it rejects propagate at once
        operation_name: Used in log messages

    Returns:
        Whatever func returns

    Raises:
        MaxRetriesExceeded: If all attempts fail with retryable errors
    """
    kwargs = kwargs or {}
    max_attempts = max(1, max_attempts)
    current_delay = delay
    last_exception = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                logger.info(f"{operation_name} succeeded on attempt {attempt}")
            return result
        except exceptions as e:
            if should_retry is not None and not should_retry(e):
                raise
            last_exception = e
            if attempt == max_attempts:
                break
            logger.warning(f"{operation_name} failed on attempt {attempt}/{max_attempts}, "
                           f"retrying in {current_delay:.1f}s due to {type(e).__name__}: {e}")
            time.sleep(current_delay)
            current_delay *= backoff

    raise MaxRetriesExceeded(max_attempts, last_exception)


def retry_settings(error_config: Dict[str, Any]) -> Dict[str, Any]:
    """Translate the error_handling config section into retry_call keyword arguments."""
    return {
        'max_attempts': error_config.get('max_retries', 3) + 1,
        'delay': error_config.get('retry_wait_seconds', 5),
        'backoff': error_config.get('retry_backoff', 1.0),
    }


def is_retryable_error(exception: Exception) -> bool:
    """
    Decide whether a failure looks transient.

    Args:
        exception: Exception raised by a gateway call

    Returns:
        True for network errors, errors flagged transient, and messages that
        match known transient patterns
    """
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True

    if getattr(exception, 'transient', False):
        return True

    error_msg = str(exception).lower()
    return any(pattern in error_msg for pattern in TRANSIENT_PATTERNS)
