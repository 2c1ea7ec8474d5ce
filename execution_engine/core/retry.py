"""
Retry with exponential backoff for transient failures.

Errors are classified as retryable when their message or type name contains
one of the configured substrings (case-insensitive). Anything else is
re-raised on the first attempt.
"""

import asyncio
import functools
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS = [
    "timeout",
    "ETIMEDOUT",
    "ECONNRESET",
    "ECONNREFUSED",
    "ENOTFOUND",
    "network",
    "NetworkError",
    "TimeoutError",
]


class RetryOptions(BaseModel):
    """Configuration for a retry loop."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(3, ge=1, description="Total attempts including the first")
    initial_delay_ms: int = Field(1000, ge=0, description="Delay before the second attempt")
    max_delay_ms: int = Field(8000, ge=0, description="Upper bound for any single delay")
    backoff_multiplier: float = Field(2, ge=1, description="Delay growth factor")
    retryable_errors: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RETRYABLE_ERRORS),
        description="Substrings marking an error as transient",
    )


class RetryResult(BaseModel):
    """Outcome of retry_with_backoff_safe."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    result: Any = None
    error: Optional[BaseException] = None
    attempts: int


def is_retryable_error(error: BaseException, retryable_errors: Sequence[str]) -> bool:
    """Check the error message and type name against the retryable substrings."""
    error_message = str(error).lower()
    error_name = type(error).__name__.lower()

    return any(
        candidate.lower() in error_message or candidate.lower() in error_name
        for candidate in retryable_errors
    )


def calculate_delay(
    attempt: int,
    initial_delay_ms: int,
    max_delay_ms: int,
    backoff_multiplier: float,
) -> int:
    """Delay in ms to wait after the given (1-based) failed attempt."""
    delay = initial_delay_ms * (backoff_multiplier ** (attempt - 1))
    return int(min(delay, max_delay_ms))


async def _sleep(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
) -> T:
    """
    Retry an async callable with exponential backoff.

    Args:
        fn: Zero-argument coroutine function to call
        options: Retry configuration, defaults to RetryOptions()

    Returns:
        The first successful result of fn

    Raises:
        The first non-retryable error, or the last error once attempts run out
    """
    opts = options or RetryOptions()
    last_error: Optional[BaseException] = None

    for attempt in range(1, opts.max_attempts + 1):
        try:
            logger.debug(f"Attempt {attempt}/{opts.max_attempts}")
            result = await fn()
            if attempt > 1:
                logger.info(f"Success on attempt {attempt}")
            return result
        except Exception as e:
            last_error = e
            logger.warning(f"Attempt {attempt} failed: {e}")

            if not is_retryable_error(e, opts.retryable_errors):
                logger.debug("Error is not retryable, raising immediately")
                raise

            if attempt < opts.max_attempts:
                delay = calculate_delay(
                    attempt,
                    opts.initial_delay_ms,
                    opts.max_delay_ms,
                    opts.backoff_multiplier,
                )
                logger.debug(f"Waiting {delay}ms before retry")
                await _sleep(delay)

    logger.error(f"All {opts.max_attempts} attempts failed")
    raise last_error


async def retry_with_backoff_safe(
    fn: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
) -> RetryResult:
    """
    Retry an async callable, returning a RetryResult instead of raising.

    Args:
        fn: Zero-argument coroutine function to call
        options: Retry configuration, defaults to RetryOptions()

    Returns:
        RetryResult with the result or the final error and the attempt count
    """
    opts = options or RetryOptions()
    last_error: Optional[BaseException] = None

    for attempt in range(1, opts.max_attempts + 1):
        try:
            result = await fn()
            return RetryResult(success=True, result=result, attempts=attempt)
        except Exception as e:
            last_error = e

            if not is_retryable_error(e, opts.retryable_errors):
                return RetryResult(success=False, error=e, attempts=attempt)

            if attempt < opts.max_attempts:
                await _sleep(
                    calculate_delay(
                        attempt,
                        opts.initial_delay_ms,
                        opts.max_delay_ms,
                        opts.backoff_multiplier,
                    )
                )

    return RetryResult(success=False, error=last_error, attempts=opts.max_attempts)


def make_retryable(
    fn: Callable[..., Awaitable[T]],
    options: Optional[RetryOptions] = None,
) -> Callable[..., Awaitable[T]]:
    """
    Create a retry-enabled version of an async function.

    Args:
        fn: Async function to wrap
        options: Fixed retry configuration for every call

    Returns:
        Async function with the same signature that retries on failure
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        return await retry_with_backoff(lambda: fn(*args, **kwargs), options)

    return wrapper

