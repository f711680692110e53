"""
clustercache - Retry Logic with Exponential Backoff

Provides retry utilities with exponential backoff and jitter for transient failures.
Used for initial cluster discovery and for spacing out failed registry refreshes.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Exponential backoff base (default: 2.0)
        jitter: Add random jitter to prevent thundering herd (default: True)
        jitter_factor: Jitter randomization factor 0-1 (default: 0.1)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")


def exponential_backoff(
    attempt: int,
    base_delay: float = 1.0,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    jitter_factor: float = 0.1,
) -> float:
    """
    Calculate exponential backoff delay with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds
        exponential_base: Base for exponential calculation
        max_delay: Maximum delay cap
        jitter: Whether to add random jitter
        jitter_factor: Jitter randomization factor (0-1)

    Returns:
        Delay in seconds, never above max_delay

    Example:
        >>> exponential_backoff(0, jitter=False)
        1.0
        >>> exponential_backoff(3, jitter=False)
        8.0
    """
    delay = min(base_delay * (exponential_base**attempt), max_delay)

    if jitter and jitter_factor > 0:
        jitter_amount = delay * jitter_factor
        delay = delay + random.uniform(-jitter_amount, jitter_amount)
        delay = min(max(0.001, delay), max_delay)

    return delay


async def with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    retry_on: tuple[type[Exception], ...],
    config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """
    Await func() with retry logic.

    Args:
        func: Zero-argument coroutine function to execute
        retry_on: Exception types that trigger a retry; anything else propagates
        config: Retry configuration (uses defaults if None)
        on_retry: Optional callback called on each retry (attempt, error)

    Returns:
        Result of successful function execution

    Raises:
        Last exception if all retries exhausted

    Example:
        >>> await with_retry(registry.refresh, retry_on=(DiscoveryError,), config=RetryConfig(max_retries=3))
    """
    if config is None:
        config = RetryConfig()

    name = getattr(func, "__qualname__", repr(func))
    attempt = 0
    while True:
        try:
            result = await func()
        except retry_on as e:
            if attempt >= config.max_retries:
                logger.error(
                    f"All {config.max_retries} retries exhausted",
                    extra={"function": name, "error": str(e), "error_type": type(e).__name__},
                )
                raise

            delay = exponential_backoff(
                attempt=attempt,
                base_delay=config.base_delay,
                exponential_base=config.exponential_base,
                max_delay=config.max_delay,
                jitter=config.jitter,
                jitter_factor=config.jitter_factor,
            )
            logger.warning(
                f"Retry attempt {attempt + 1}/{config.max_retries} after {delay:.2f}s",
                extra={
                    "attempt": attempt + 1,
                    "max_retries": config.max_retries,
                    "delay_seconds": delay,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "function": name,
                },
            )

            if on_retry:
                try:
                    on_retry(attempt + 1, e)
                except Exception as callback_error:
                    logger.error(f"Retry callback failed: {callback_error}")

            attempt += 1
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info(
                f"Retry succeeded after {attempt} attempts",
                extra={"attempt": attempt, "function": name},
            )
        return result
