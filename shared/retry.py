"""
Retry and timeout helpers for calls to the store and the shared cache.
"""

import asyncio
import random
from typing import Any, Optional, Callable, Awaitable

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.1,
                 max_delay: float = 2.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential",
                 timeout: Optional[float] = None):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy
        self.timeout = timeout


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


async def with_timeout(awaitable: Awaitable[Any], timeout: Optional[float]) -> Any:
    """Await with an optional deadline; raises asyncio.TimeoutError when exceeded."""
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)


async def call_with_retry(func: Callable[..., Awaitable[Any]],
                          *args,
                          config: Optional[RetryConfig] = None,
                          exceptions: tuple = (Exception,),
                          name: Optional[str] = None,
                          giveup: tuple = (),
                          **kwargs) -> Any:
    """Call ``func`` with bounded retries and a per-attempt timeout.

    Only exceptions listed in ``exceptions`` (plus per-attempt timeouts) are
    retried; anything else propagates on the first attempt. Exceptions in
    ``giveup`` always propagate immediately, even when they subclass a
    retryable type.
    """
    if config is None:
        config = RetryConfig()

    label = name or getattr(func, "__name__", "call")
    logger = get_logger(f"catalog.retry.{label}")
    retryable = tuple(exceptions) + (asyncio.TimeoutError,)
    last_exception: Optional[Exception] = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await with_timeout(func(*args, **kwargs), config.timeout)

            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=label)

            return result

        except giveup:
            raise

        except retryable as e:
            last_exception = e

            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    function=label,
                    error=repr(e)
                )
                break

            delay = _calculate_delay(attempt, config)

            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=label,
                error=repr(e)
            )

            await asyncio.sleep(delay)

    raise RetryError(
        f"Function {label} failed after {config.max_attempts} attempts",
        last_exception=last_exception or Exception("Unknown error"),
        attempts=config.max_attempts
    )


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay between retry attempts."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
