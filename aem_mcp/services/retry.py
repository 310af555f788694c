"""
RetryPolicy - Bounded retries with exponential backoff for recoverable failures.

The policy never decides whether an operation is safe to repeat. Callers
only hand it operations that are idempotent (reads, or writes they have
marked retry-safe); everything else runs with retry_attempts=0.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from aem_mcp.services.errors import AEMError, classify_exception

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retries."""

    retry_attempts: int = 3  # Attempts beyond the first
    retry_delay: timedelta = timedelta(seconds=1)  # Base delay
    max_delay: timedelta = timedelta(seconds=30)
    jitter: float = 0.1  # Fraction of the delay added at random


class RetryPolicy:
    """
    Retries an async operation while it fails with recoverable errors.

    Usage:
        policy = RetryPolicy(RetryConfig(retry_attempts=3))
        data = await policy.execute(lambda: fetch(path), context={"path": path})
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        if self.config.retry_attempts < 0:
            raise ValueError("retry_attempts must not be negative")
        self._sleep = sleep
        self.retries = 0

    def get_delay(self, attempt: int, error: AEMError | None = None) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        base = self.config.retry_delay.total_seconds()
        cap = self.config.max_delay.total_seconds()

        delay = base * (2**attempt)
        if error is not None and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        delay = min(delay, cap)

        if self.config.jitter > 0 and delay > 0:
            delay += random.uniform(0, delay * self.config.jitter)
        return delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: dict[str, Any] | None = None,
        retry_attempts: int | None = None,
    ) -> T:
        """
        Run the operation, retrying recoverable failures.

        Args:
            operation: Zero-argument coroutine function performing one attempt
            context: Extra fields for log lines and error context
            retry_attempts: Override the configured number of retries

        Returns:
            The operation's result

        Raises:
            AEMError: The first non-recoverable error, or the last error once
                attempts are exhausted
        """
        context = context or {}
        max_retries = (
            self.config.retry_attempts if retry_attempts is None else retry_attempts
        )
        total_attempts = max_retries + 1
        label = context.get("operation", "operation")

        for attempt in range(total_attempts):
            try:
                return await operation()
            except AEMError as e:
                error = e
            except Exception as e:
                error = classify_exception(e)

            if not error.context:
                error.context = dict(context)

            if not error.recoverable:
                raise error

            if attempt == total_attempts - 1:
                break

            delay = self.get_delay(attempt, error)
            self.retries += 1
            logger.warning(
                f"{label} failed (attempt {attempt + 1}/{total_attempts}): "
                f"{error.message}; retrying in {delay:.2f}s"
            )
            await self._sleep(delay)

        if total_attempts > 1:
            error.details["attempts"] = total_attempts
            error.message = f"{error.message} (failed after {total_attempts} attempts)"
            error.args = (error.message,)
            logger.error(f"{label} failed after {total_attempts} attempts")
        raise error
