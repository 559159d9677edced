"""
Decorators shared by the stores, the market data calls, and the engine.

``retry``/``retry_from_settings`` wrap store and market-data calls so a
transient outage costs a few attempts instead of a failed task;
``measure_time`` reports how long an expensive step took.
"""

from __future__ import annotations

import functools
import time
from typing import Any, Callable, Optional, TypeVar

from ..exceptions import RetriesExhaustedError
from ..logging import get_logger

T = TypeVar("T", bound=Callable[..., Any])

logger = get_logger(__name__)


def _call_name(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", getattr(func, "__name__", repr(func)))


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> Callable[[T], T]:
    """
    Retry decorator with exponential backoff.

    The n-th retry waits ``delay * backoff_factor ** (n - 1)`` seconds.
    Exceptions outside ``exceptions`` propagate on the first failure.

    Args:
        max_attempts: Attempts including the first call
        delay: Wait before the first retry, in seconds
        backoff_factor: Multiplier applied to the wait after each retry
        exceptions: Exception types worth retrying
        on_retry: Called as (attempt, exception) before each retry

    Raises:
        RetriesExhaustedError: Every attempt failed; ``cause`` is the last failure
    """
    def decorator(func: T) -> T:
        name = _call_name(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            wait = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        raise RetriesExhaustedError(
                            f"{name} failed after {max_attempts} attempts: {e}",
                            attempts=max_attempts,
                            operation=name,
                            cause=e,
                        ) from e

                    logger.warning(f"{name} failed (attempt {attempt}/{max_attempts}), retrying in {wait:.2f}s: {e}")
                    if on_retry:
                        on_retry(attempt, e)
                    if wait > 0:
                        time.sleep(wait)
                    wait *= backoff_factor

            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        return wrapper
    return decorator


def retry_from_settings(retry_settings: Any, exceptions: tuple = (Exception,)) -> Callable[[T], T]:
    """Build a ``retry`` decorator from a RetrySettings section."""
    return retry(
        max_attempts=retry_settings.max_attempts,
        delay=retry_settings.delay,
        backoff_factor=retry_settings.backoff_factor,
        exceptions=exceptions,
    )


def measure_time(
    logger: Optional[Any] = None,
    level: str = "INFO",
    message: Optional[str] = None,
) -> Callable[[T], T]:
    """
    Log how long the wrapped call took.

    The duration goes out as ``execution_time`` (seconds) next to the
    ``function`` name, so log processors can aggregate it.

    Args:
        logger: Logger to use (None disables logging)
        level: Log level name
        message: Log message (defaults to "<name> executed in <n> seconds")
    """
    def decorator(func: T) -> T:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - started
                if logger:
                    log_func = getattr(logger, level.lower(), logger.info)
                    log_func(
                        message or f"{func.__name__} executed in {elapsed:.4f} seconds",
                        execution_time=round(elapsed, 6),
                        function=func.__name__,
                    )

        return wrapper
    return decorator
