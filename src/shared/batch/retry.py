"""Async retry helper for remote calls with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FATAL_STATUS_CODES = frozenset({401, 403})
FATAL_STATUS_NAMES = frozenset({"PERMISSION_DENIED", "UNAUTHENTICATED", "NOT_FOUND"})
FATAL_MESSAGE_MARKERS = (
    "403",
    "The caller does not have permission",
    "Requested entity was not found",
)


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("code", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    return None


def is_fatal_error(error: BaseException) -> bool:
    """Return True when *error* must never be retried.

    Authorization failures and "entity not found" responses will not succeed
    on a second attempt, so they short-circuit the retry loop.
    """
    if _status_code(error) in FATAL_STATUS_CODES:
        return True

    status = getattr(error, "status", None)
    if isinstance(status, str) and status.upper() in FATAL_STATUS_NAMES:
        return True

    message = str(getattr(error, "message", None) or error)
    return any(marker in message for marker in FATAL_MESSAGE_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    *,
    initial_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation_name: Optional[str] = None,
) -> T:
    """Await ``operation`` until it succeeds or attempts run out.

    The delay before retry ``n`` (0-based) is ``initial_delay * 2 ** n``. Fatal
    errors are re-raised immediately; once attempts are exhausted the last
    error is re-raised unchanged so callers can inspect the original cause.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Maximum number of attempts (>= 1)
        initial_delay: Delay in seconds before the first retry
        sleep: Awaitable sleep function, injectable for tests
        operation_name: Label used in log messages

    Returns:
        Result of the first successful attempt

    Example:
        analysis = await with_retry(lambda: client.analyze(image), max_attempts=3)
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    label = operation_name or getattr(operation, "__name__", "operation")
    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            if is_fatal_error(exc):
                logger.error("%s failed with non-retryable error: %s", label, exc)
                raise
            if attempt >= max_attempts - 1:
                break
            delay = initial_delay * (2 ** attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                label,
                attempt + 1,
                max_attempts,
                exc,
                delay,
            )
            await sleep(delay)

    logger.error("%s failed after %d attempts: %s", label, max_attempts, last_error)
    if last_error is not None:
        raise last_error

    # Should never reach here, but satisfy type checker
    raise RuntimeError("Retry loop completed without result or exception")
