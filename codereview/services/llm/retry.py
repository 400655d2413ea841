"""
Shared retry logic for evaluator calls and repository fetches.

A RetryConfig describes a bounded number of attempts with exponential,
jittered backoff and an optional per-attempt timeout. Exceptions listed in
``non_retryable_exceptions`` are re-raised immediately.
"""

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from codereview.infrastructure.config.settings import Settings, settings as default_settings
from codereview.infrastructure.constants.evaluation_constants import (
    FETCH_MAX_ATTEMPTS,
    FETCH_RETRY_MIN_DELAY,
    FETCH_RETRY_MAX_DELAY,
    FETCH_RETRY_FACTOR,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 2
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 1.5
    jitter: bool = True
    attempt_timeout: Optional[float] = None
    retryable_exceptions: Tuple[Type[BaseException], ...] = (Exception,)
    non_retryable_exceptions: Tuple[Type[BaseException], ...] = ()

    def get_delay(self, attempt: int) -> float:
        """Delay before the retry that follows the given zero-based attempt."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return min(delay, self.max_delay)


def evaluation_retry_config(config: Optional[Settings] = None) -> RetryConfig:
    """Retry policy of one evaluation worker run."""
    config = config or default_settings
    return RetryConfig(
        max_attempts=config.evaluation_max_attempts,
        base_delay=config.evaluation_retry_min_delay,
        max_delay=config.evaluation_retry_max_delay,
        exponential_base=config.evaluation_retry_factor,
        attempt_timeout=config.evaluator_timeout,
    )


def fetch_retry_config() -> RetryConfig:
    """Retry policy of the repository snapshot fetch."""
    return RetryConfig(
        max_attempts=FETCH_MAX_ATTEMPTS,
        base_delay=FETCH_RETRY_MIN_DELAY,
        max_delay=FETCH_RETRY_MAX_DELAY,
        exponential_base=FETCH_RETRY_FACTOR,
    )


def with_retry(config: Optional[RetryConfig] = None):
    """
    Decorator that adds retry logic to async functions.

    Args:
        config: Retry configuration (two attempts with short backoff if None)

    Returns:
        Decorated function with retry logic
    """
    retry_config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception: Optional[BaseException] = None
            attempts = max(1, retry_config.max_attempts)
            name = getattr(func, "__name__", repr(func))

            for attempt in range(attempts):
                try:
                    if retry_config.attempt_timeout:
                        return await asyncio.wait_for(
                            func(*args, **kwargs), timeout=retry_config.attempt_timeout
                        )
                    return await func(*args, **kwargs)
                except retry_config.retryable_exceptions as e:
                    if isinstance(e, retry_config.non_retryable_exceptions):
                        raise
                    last_exception = e

                    if attempt < attempts - 1:
                        delay = retry_config.get_delay(attempt)
                        logger.warning(
                            f"Attempt {attempt + 1}/{attempts} failed for "
                            f"{name}: {e!r}. Retrying in {delay:.2f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"All {attempts} attempts failed for {name}: {e!r}"
                        )

            raise last_exception

        return wrapper

    return decorator


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    config: Optional[RetryConfig] = None,
    **kwargs,
) -> T:
    """
    Execute an async function with retry logic.

    Args:
        func: Async function to execute
        *args: Positional arguments for the function
        config: Retry configuration
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function
    """
    return await with_retry(config=config)(func)(*args, **kwargs)
