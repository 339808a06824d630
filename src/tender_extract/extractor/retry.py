"""Bounded exponential-backoff retries for network and engine calls.

Wraps a coroutine factory with tenacity's ``AsyncRetrying``. Only errors that
``is_retryable`` accepts are retried -- timeouts, transport failures, 5xx and
transient recognition errors. Quota, size and content rejections fail on the
first attempt. The last exception is re-raised once attempts run out.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tender_extract.config.settings import ExtractionSettings
from tender_extract.extractor.errors import ExtractionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait between tries."""

    attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: ExtractionSettings) -> RetryPolicy:
        return cls(
            attempts=max(1, settings.retry_attempts),
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )


def is_retryable(exc: BaseException) -> bool:
    """Classify *exc* as transient (retry) or terminal (fail fast)."""
    if isinstance(exc, ExtractionError):
        return bool(exc.retryable)
    # Timeouts and I/O hiccups from worker threads or temp files
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, OSError))


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
) -> T:
    """Await ``operation()`` with up to ``policy.attempts`` tries.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per try.
        policy: Attempt bound and backoff parameters.
        description: Label used in retry log lines.

    Returns:
        The first successful result.

    Raises:
        The last exception raised by *operation* when it is not retryable or
        all attempts are used up.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay_seconds,
            max=policy.max_delay_seconds,
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        # Iterator form awaits lambdas and partials as well as coroutine functions
        async for attempt in retrying:
            with attempt:
                return await operation()
    finally:
        attempts = retrying.statistics.get("attempt_number", 1)
        if attempts > 1:
            logger.info("%s took %d attempts", description, attempts)
