"""
Retrying remote calls with exponential backoff.

The remote content store can time out, drop connections or answer 429/5xx
while a batch is running. Those calls are wrapped with
:func:`exponential_backoff`; once the attempts run out the last error is
raised as the cause of a :class:`RetryError`.

An exception may carry a ``retry_after`` attribute (seconds, e.g. from a
``Retry-After`` header). The wait before the next attempt is then at least
that long, still capped by ``max_delay``.
"""

import time
import functools
import random
from typing import Callable, Type, Tuple, Optional

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def _next_delay(delay: float, error: Exception, max_delay: float, jitter: bool) -> float:
    wait = delay
    retry_after = getattr(error, "retry_after", None)
    if retry_after:
        wait = max(wait, float(retry_after))
    if jitter:
        wait *= random.uniform(0.5, 1.0)
    return min(wait, max_delay)


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    jitter: bool = False,
):
    """
    Decorator retrying ``exceptions`` with exponentially growing waits.

    Args:
        max_retries: Retries after the first attempt (0 = single attempt)
        base_delay: Wait before the first retry, in seconds
        max_delay: Upper bound for any single wait
        exponential_base: Factor applied to the wait after each retry
        exceptions: Exception types that trigger a retry; others propagate
        on_retry: Called as on_retry(attempt, exception, delay) before sleeping
        jitter: Randomize each wait down to half its value

    Example:
        @exponential_backoff(max_retries=3, exceptions=(requests.Timeout,))
        def fetch_post(post_id):
            return session.get(f"{api_url}posts/{post_id}")
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay
            attempts = max_retries + 1
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == attempts:
                        raise RetryError(f"{func.__name__} failed after {attempts} attempts: {e}") from e
                    wait = _next_delay(delay, e, max_delay, jitter)
                    if on_retry:
                        on_retry(attempt, e, wait)
                    time.sleep(wait)
                    delay *= exponential_base

        return wrapper
    return decorator


def should_retry_http_status(status_code: int) -> bool:
    """True for request timeouts, rate limiting and transient server errors."""
    return status_code in RETRYABLE_STATUS_CODES


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a ``Retry-After`` header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
