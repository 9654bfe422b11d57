"""Bounded retry for deletions blocked by dependent objects.

Only errors classified as retryable are retried; everything else is raised
on the first attempt. Cancellation stops retrying immediately and raises
the error from the attempt in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .clients import error_code

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEPENDENCY_VIOLATION = "DependencyViolation"


def is_dependency_violation(exc: BaseException) -> bool:
    """True if AWS refused the call because another object still references the resource."""
    return error_code(exc) == DEPENDENCY_VIOLATION


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool],
    max_attempts: int,
    *,
    interval: float,
    cancel: asyncio.Event | None = None,
    description: str = "operation",
) -> T:
    """Run operation until it succeeds, fails terminally, or attempts run out.

    Args:
        operation: Coroutine factory invoked once per attempt.
        is_retryable: Classifies an error as retryable.
        max_attempts: Upper bound on invocations (>= 1).
        interval: Seconds to wait between attempts.
        cancel: Event that, once set, stops further attempts.
        description: Human-readable name for logging.

    Returns:
        The operation's result.

    Raises:
        The terminal error, the in-flight error on cancellation, or the last
        retryable error once max_attempts is exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = e

            if cancel is not None and cancel.is_set():
                logger.info(
                    "Retry cancelled",
                    extra={"description": description, "attempt": attempt},
                )
                raise

            if attempt == max_attempts:
                break

            logger.info(
                "Retryable failure, waiting before next attempt",
                extra={
                    "description": description,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "wait_seconds": interval,
                    "error": str(e),
                },
            )

            if cancel is None:
                await asyncio.sleep(interval)
            else:
                try:
                    await asyncio.wait_for(cancel.wait(), timeout=interval)
                except TimeoutError:
                    pass
                else:
                    raise

    logger.warning(
        "Retry attempts exhausted",
        extra={"description": description, "max_attempts": max_attempts},
    )
    if last_error is None:
        raise ValueError(f"{description} finished without an attempt")
    raise last_error
