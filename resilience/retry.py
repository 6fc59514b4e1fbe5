"""
Bounded retry with exponential backoff.

The session store performs no automatic retries for backend failures.
This helper is only used to re-run a compare-and-swap merge that lost a
race with a concurrent writer, so attempts are few and delays are short.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts, including the first one.
        initial_delay: Delay before the first retry in seconds.
        exponential_base: Base for exponential backoff calculation.
        max_delay: Maximum delay between retries in seconds, None for no cap.
        retryable_exceptions: Exception types that trigger a retry; anything
            else propagates immediately.
    """
    max_attempts: int = 3
    initial_delay: float = 0.01
    exponential_base: float = 2.0
    max_delay: Optional[float] = 0.2
    retryable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=lambda: (Exception,)
    )


class RetryExhaustedException(Exception):
    """
    Exception raised when all retry attempts have been exhausted.

    Wraps the last exception that caused the retry to fail.
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Exception,
        operation_name: Optional[str] = None
    ):
        self.attempts = attempts
        self.last_exception = last_exception
        self.operation_name = operation_name
        super().__init__(message)


def calculate_delay(
    attempt: int,
    initial_delay: float,
    exponential_base: float,
    max_delay: Optional[float] = None
) -> float:
    """
    Calculate the delay for a given retry attempt using exponential backoff.

    The delay is calculated as: initial_delay * (exponential_base ^ attempt)

    Args:
        attempt: The current attempt number (0-indexed)
        initial_delay: The initial delay in seconds
        exponential_base: The base for exponential calculation
        max_delay: Optional maximum delay cap

    Returns:
        The calculated delay in seconds
    """
    delay = initial_delay * (exponential_base ** attempt)

    if max_delay is not None:
        delay = min(delay, max_delay)

    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    operation_name: Optional[str] = None,
    **kwargs: Any
) -> T:
    """
    Execute an async function with retry logic.

    Example usage:
        result = await retry_async(
            store._merge_once,
            storage_key, field_type, value, expiry,
            config=RetryConfig(max_attempts=5, retryable_exceptions=(CasConflictError,)),
            operation_name="session_merge"
        )

    Args:
        func: The async function to execute
        *args: Positional arguments to pass to the function
        config: Optional RetryConfig object with retry settings
        operation_name: Optional name for logging purposes
        **kwargs: Keyword arguments to pass to the function

    Returns:
        The result of the function call

    Raises:
        RetryExhaustedException: When all retry attempts are exhausted
    """
    effective_config = config or RetryConfig()
    op_name = operation_name or func.__name__
    last_exception: Optional[Exception] = None

    for attempt in range(effective_config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except effective_config.retryable_exceptions as e:
            last_exception = e

            if attempt == effective_config.max_attempts - 1:
                logger.error(
                    "Retry exhausted for operation '%s' after %d attempts. "
                    "Last error: %s",
                    op_name,
                    effective_config.max_attempts,
                    str(e),
                    extra={"extra_data": {
                        "operation": op_name,
                        "attempts": effective_config.max_attempts,
                        "last_error": str(e),
                        "error_type": type(e).__name__
                    }}
                )
                raise RetryExhaustedException(
                    f"Operation '{op_name}' failed after {effective_config.max_attempts} attempts",
                    attempts=effective_config.max_attempts,
                    last_exception=e,
                    operation_name=op_name
                ) from e

            delay = calculate_delay(
                attempt,
                effective_config.initial_delay,
                effective_config.exponential_base,
                effective_config.max_delay
            )

            logger.warning(
                "Retry attempt %d/%d for operation '%s' failed with %s: %s. "
                "Retrying in %.3f seconds...",
                attempt + 1,
                effective_config.max_attempts,
                op_name,
                type(e).__name__,
                str(e),
                delay,
                extra={"extra_data": {
                    "operation": op_name,
                    "attempt": attempt + 1,
                    "max_attempts": effective_config.max_attempts,
                    "delay_seconds": delay,
                }}
            )

            await asyncio.sleep(delay)

    # Unreachable unless max_attempts < 1
    raise RetryExhaustedException(
        f"Operation '{op_name}' failed after {effective_config.max_attempts} attempts",
        attempts=effective_config.max_attempts,
        last_exception=last_exception or Exception("No attempts made"),
        operation_name=op_name
    )
