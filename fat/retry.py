"""Bounded exponential backoff around a single agent call.

Cancellation is the asyncio kind: a cancelled task, or an enclosing
``asyncio.timeout`` whose deadline passed. Both are observed before every
attempt and interrupt a backoff sleep immediately.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay_sec: float = 1.0
    max_delay_sec: float = 10.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


class RetryError(Exception):
    """Raised when every attempt failed (or a non-retryable failure stopped the loop)."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"all {attempts} attempts failed, last error: {last_error}")


def is_retryable(exc: BaseException) -> bool:
    """Cancellation and deadlines are final; anything else is retried unless it says otherwise."""
    if isinstance(exc, (asyncio.CancelledError, TimeoutError)):
        return False
    return bool(getattr(exc, "retryable", True))


class RetryPolicy:
    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()

    def backoff(self, attempt: int) -> float:
        """Delay after the 0-based ``attempt`` failed."""
        cfg = self.config
        delay = cfg.initial_delay_sec * cfg.multiplier ** attempt
        return min(delay, cfg.max_delay_sec)

    async def execute(self, attempt_fn: Callable[[], Awaitable[T]], label: str = "call") -> T:
        """Run ``attempt_fn`` until it succeeds or the attempt budget is spent.

        Args:
            attempt_fn: Zero-argument coroutine factory; called once per attempt.
            label: Used in log lines only.

        Returns:
            Whatever the first successful attempt returned.

        Raises:
            RetryError: Every attempt failed, or a non-retryable error ended the loop.
            asyncio.CancelledError: The task was cancelled before an attempt or
                during a backoff sleep.
        """
        max_attempts = self.config.max_attempts
        attempt = 0

        while True:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise asyncio.CancelledError(f"cancelled before attempt {attempt + 1}")

            try:
                return await attempt_fn()
            except Exception as exc:
                error = exc
            attempt += 1

            if not is_retryable(error):
                logger.warning("%s failed with non-retryable error: %s", label, error)
                raise RetryError(attempt, error) from error
            if attempt == max_attempts:
                raise RetryError(attempt, error) from error

            delay = self.backoff(attempt - 1)
            logger.warning(
                "%s attempt %d/%d failed: %s, retrying in %.2fs",
                label, attempt, max_attempts, error, delay,
            )
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                logger.info("%s cancelled during backoff after attempt %d", label, attempt)
                raise
