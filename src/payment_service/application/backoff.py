"""Retry-with-delay wrapper for fallible async calls.

Delays come from an ordered schedule in seconds; the last value is reused
for any attempt beyond the end of the schedule.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

import httpx

from payment_service.application.exceptions import PermanentError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SCHEDULE: tuple[float, ...] = (1.0, 5.0, 30.0)
JITTER_RATIO = 0.2

Sleep = Callable[[float], Awaitable[None]]


def is_retryable(exc: BaseException) -> bool:
    """Server-class, network and timeout failures retry; client-class never do."""
    if isinstance(exc, PermanentError):
        return False
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return _is_retryable_status(exc.response.status_code)
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return _is_retryable_status(status_code)
    return False


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def delay_for(attempt: int, schedule: Sequence[float], *, jitter: bool = False) -> float:
    if not schedule:
        return 0.0
    delay = schedule[min(attempt, len(schedule) - 1)]
    if jitter:
        delay *= random.uniform(1 - JITTER_RATIO, 1 + JITTER_RATIO)
    return delay


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    schedule: tuple[float, ...] = DEFAULT_SCHEDULE
    jitter: bool = False
    retryable: Callable[[BaseException], bool] = is_retryable


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    max_retries: int = 3,
    schedule: Sequence[float] = DEFAULT_SCHEDULE,
    retryable: Callable[[BaseException], bool] = is_retryable,
    jitter: bool = False,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_retries + 1`` times.

    A non-retryable error is re-raised immediately. When every attempt
    fails the last error is re-raised to the caller.
    """
    attempt = 0
    while True:
        try:
            result = await operation()
        except Exception as exc:
            if not retryable(exc):
                logger.warning(
                    "%s failed with non-retryable error: %s", operation_name, exc,
                )
                raise
            if attempt >= max_retries:
                logger.warning(
                    "%s failed after %d attempts: %s", operation_name, attempt + 1, exc,
                )
                raise
            delay = delay_for(attempt, schedule, jitter=jitter)
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                operation_name, attempt + 1, max_retries + 1, delay, exc,
            )
            await sleep(delay)
            attempt += 1
            continue

        if attempt > 0:
            logger.info("%s succeeded after %d retries", operation_name, attempt)
        return result


async def run_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str,
    sleep: Sleep = asyncio.sleep,
) -> T:
    return await retry_with_backoff(
        operation,
        operation_name=operation_name,
        max_retries=policy.max_retries,
        schedule=policy.schedule,
        retryable=policy.retryable,
        jitter=policy.jitter,
        sleep=sleep,
    )
