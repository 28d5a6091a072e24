"""Retry helper with linear back-off for transient failures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from conductor.errors import OrchestrationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
) -> T:
    """
    Run ``operation`` up to ``max_retries`` times.

    Waits ``delay * attempt`` seconds between attempts. Orchestration errors
    flagged non-retryable (no candidate, open circuit, cancellation, ...) are
    raised immediately; otherwise the last error is re-raised once attempts
    run out.
    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be >= 1, got {max_retries}")

    last_error: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except OrchestrationError as exc:
            if not exc.retryable:
                raise
            last_error = exc
        except Exception as exc:
            last_error = exc

        if attempt == max_retries:
            break

        logger.warning("Operation failed, attempt %d/%d: %s", attempt, max_retries, last_error)
        await asyncio.sleep(delay * attempt)

    assert last_error is not None
    raise last_error
