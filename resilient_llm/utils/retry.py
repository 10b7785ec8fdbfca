"""Retry Handler Utility

Implements exponential backoff with jitter for retrying transient failures.

Features:
- Failures classified into AIError; only retryable codes are retried
- Exponential backoff with symmetric jitter for request spreading
- Explicit attempt loop; the retry callback is an observer only
- Cooperative sleep (asyncio) so a cancelled request abandons its wait
- Built-in structured logging for observability
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from resilient_llm.models.llm import RetryConfig
from resilient_llm.observability.metrics import RETRY_ATTEMPTS
from resilient_llm.services.llm.error_classifier import classify
from resilient_llm.utils.exceptions import AIError

logger = structlog.get_logger(__name__)


T = TypeVar("T")

RetryObserver = Callable[[int, AIError], None]
Sleeper = Callable[[float], Awaitable[None]]


class RetryHandler:
    """Async retry handler with exponential backoff and jitter.

    - Exponential backoff: delay = base * 2^attempt
    - Max delay cap: prevents excessive wait times
    - Jitter: ±jitter_factor of the capped delay
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        """Initialize retry handler with configuration.

        Args:
            config: Retry configuration; defaults to 3 retries, 1s base,
                10s cap, 25% jitter
            sleep: Awaitable sleep function, injectable for tests
        """
        self.config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay in seconds before the retry following ``attempt``.

        Args:
            attempt: Zero-indexed attempt that just failed

        Returns:
            min(base * 2^attempt, max_delay) perturbed by ±jitter_factor
        """
        delay = min(
            self.config.base_delay_seconds * (2**attempt),
            self.config.max_delay_seconds,
        )
        jitter = delay * self.config.jitter_factor
        return delay + random.uniform(-jitter, jitter)

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        on_retry: Optional[RetryObserver] = None,
    ) -> T:
        """Run ``operation`` until it succeeds or retries are exhausted.

        The operation is re-invoked from scratch on every attempt and must
        be idempotent.

        Args:
            operation: Async callable to execute
            max_retries: Retries after the first attempt; defaults to config
            on_retry: Observer called with (attempt_number, error) before
                each retry

        Returns:
            Result of the first successful attempt

        Raises:
            AIError: The classified error of the final attempt, or of the
                first non-retryable failure
        """
        retries = self.config.max_retries if max_retries is None else max_retries
        attempt = 0
        last_error: Optional[AIError] = None

        while attempt <= retries:
            try:
                return await operation()
            except Exception as e:
                error = classify(e)
                last_error = error

                if not error.retryable or attempt >= retries:
                    if error is e:
                        raise
                    raise error from e

                delay = self.calculate_delay(attempt)
                attempt += 1

                logger.warning(
                    "retry_attempt",
                    attempt=attempt,
                    max_retries=retries,
                    error_code=error.code.value,
                    error_message=error.message,
                    delay_seconds=round(delay, 3),
                )
                RETRY_ATTEMPTS.labels(error_code=error.code.value).inc()

                if on_retry is not None:
                    on_retry(attempt, error)

                await self._sleep(delay)

        # Loop always returns or raises
        raise last_error or AIError("Retry loop exited without result")  # pragma: no cover


class RetryContext:
    """Tracks retry state across one or more operations.

    Usable directly as an ``on_retry`` observer.
    """

    def __init__(self) -> None:
        self.total_retries: int = 0
        self.last_error: Optional[AIError] = None

    def __call__(self, attempt: int, error: AIError) -> None:
        self.record_retry(error)

    def record_retry(self, error: AIError) -> None:
        """Record a retry triggered by ``error``."""
        self.total_retries += 1
        self.last_error = error

    def reset(self) -> None:
        """Reset the context for reuse."""
        self.total_retries = 0
        self.last_error = None


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    on_retry: Optional[RetryObserver] = None,
) -> T:
    """Retry ``operation`` with the default backoff policy."""
    return await RetryHandler().retry(operation, max_retries, on_retry)
