"""
Shared utility functions used throughout the DigitalMe codebase.

Provides:
    - utc_now(): Timezone-aware UTC datetime (profile and delta timestamps)
    - generate_id(): UUID4 string generator (profile and source ids)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_timestamp(value): ISO-8601 string to aware UTC datetime
    - round_half_up(value, digits): Stable rounding for serialized floats
    - @with_retry: Decorator with exponential backoff for transient failures
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
import uuid
import asyncio
import logging
import time as time_module
from functools import wraps
from typing import Callable, TypeVar, Any, Tuple, Type, Optional

from digitalme.exceptions import RetryExhaustedError

T = TypeVar("T")


# ===========================================================================
# TIME AND ID UTILITIES
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``
    so serialized timestamps carry an explicit offset.

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Generate a UUID4 string used for profile and source ids."""
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted for timestamps written by JavaScript
    clients.

    Raises:
        ValueError: If ``value`` is not a valid ISO-8601 string.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def round_half_up(value: float, digits: int = 4) -> float:
    """Round ``value`` half away from zero (banker's rounding is avoided)."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


# ===========================================================================
# RETRY DECORATOR WITH EXPONENTIAL BACKOFF
# Retries are for transient failures (rate limits, timeouts) of the
# text-analysis service. The engine core itself never retries.
# ===========================================================================


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable:
    """
    Decorator for retry logic with exponential backoff.

    - Retries are for transient failures (rate limits, timeouts).
    - Eventually raises ``RetryExhaustedError`` if all attempts fail.
    - Logs each retry attempt for debugging.

    Works with both synchronous and asynchronous functions.

    Args:
        max_attempts: Maximum number of attempts (default ``3``).
        base_delay: Initial delay in seconds before the first retry
            (default ``2.0``). Subsequent delays grow exponentially:
            ``base_delay * (2 ** attempt)``.
        retryable_exceptions: Tuple of exception types that should trigger
            a retry. Any exception **not** in this tuple propagates
            immediately without retrying.
        operation_name: Human-readable name used in log messages. If
            ``None``, the wrapped function's ``__name__`` is used.

    Raises:
        RetryExhaustedError: When all retry attempts have been exhausted.
            The last exception is available as ``last_error``.

    Usage::

        @with_retry(max_attempts=3, base_delay=2.0)
        async def analyze(text: str) -> dict:
            return await client.generate_structured(text)
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation_name or func.__name__

        def _log_failure(attempt: int, error: Exception) -> float:
            delay = base_delay * (2 ** (attempt - 1))
            if attempt < max_attempts:
                logging.warning(
                    "[RETRY] %s attempt %d/%d failed: %s. Retrying in %.1fs...",
                    op_name,
                    attempt,
                    max_attempts,
                    error,
                    delay,
                )
            else:
                logging.error(
                    "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                    op_name,
                    max_attempts,
                    error,
                )
            return delay

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    delay = _log_failure(attempt, e)
                    if attempt < max_attempts:
                        await asyncio.sleep(delay)
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            )

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    delay = _log_failure(attempt, e)
                    if attempt < max_attempts:
                        time_module.sleep(delay)
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            )

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator
