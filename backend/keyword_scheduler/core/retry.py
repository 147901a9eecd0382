"""Bounded exponential-backoff retry for external calls.

Every call the pipeline makes to an outside service goes through
call_with_retry. Intermediate failures are logged and discarded; once the
retry budget is spent the last error is re-raised unchanged so callers can
apply their own node/group/theme failure policy.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from keyword_scheduler.core.config import Settings
from keyword_scheduler.core.logging import pipeline_logger

T = TypeVar("T")

DEFAULT_RETRIES = 3
DEFAULT_FACTOR = 2.0
DEFAULT_INITIAL_DELAY_MS = 500.0


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait between attempts.

    Attributes:
        retries: Retries allowed after the first attempt (total attempts is
            retries + 1).
        factor: Multiplier applied to the delay for each further retry.
        initial_delay_ms: Delay before the first retry.
    """

    retries: int = DEFAULT_RETRIES
    factor: float = DEFAULT_FACTOR
    initial_delay_ms: float = DEFAULT_INITIAL_DELAY_MS

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            retries=settings.retry_retries,
            factor=settings.retry_factor,
            initial_delay_ms=settings.retry_initial_delay_ms,
        )

    def delay_ms(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return self.initial_delay_ms * self.factor ** (attempt - 1)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    operation_name: str = "external call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await operation(), retrying failures according to policy.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        policy: Retry policy; defaults to 3 retries, factor 2, 500ms.
        operation_name: Name used in retry log lines.
        sleep: Awaitable sleep taking seconds; replaced in tests.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: The error from the final attempt once retries are exhausted.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            if attempt > policy.retries:
                pipeline_logger.retry_exhausted(operation_name, attempt, e)
                raise
            delay_ms = policy.delay_ms(attempt)
            pipeline_logger.retry_attempt(
                operation_name, attempt, policy.retries, delay_ms, e
            )
            await sleep(delay_ms / 1000)
