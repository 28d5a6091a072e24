"""Timeout wrapper that races an awaitable against a timer."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar, Union

from conductor.errors import TaskTimeoutError

T = TypeVar("T")

Operation = Union[Awaitable[T], Callable[[], Awaitable[T]]]


async def with_timeout(duration_ms: float, operation: Operation[T]) -> T:
    """
    Await ``operation`` for at most ``duration_ms`` milliseconds.

    ``operation`` may be an awaitable or a zero-argument callable returning
    one. When the timer wins, the operation is cancelled but not awaited: the
    caller gets ``TaskTimeoutError`` right away and whatever the operation
    eventually produces is discarded. Each call owns its own task, so
    concurrent calls share no state.
    """
    awaitable = operation() if callable(operation) and not inspect.isawaitable(operation) else operation
    task: asyncio.Future[T] = asyncio.ensure_future(awaitable)
    budget_ms = max(duration_ms, 0)

    try:
        done, _ = await asyncio.wait({task}, timeout=budget_ms / 1000)
    except asyncio.CancelledError:
        abandon(task)
        raise

    if task in done:
        return task.result()

    abandon(task)
    raise TaskTimeoutError(f"Operation timed out after {budget_ms:g}ms")


def abandon(task: asyncio.Future[Any]) -> None:
    """Cancel ``task`` without waiting and swallow its eventual outcome."""
    task.cancel()
    task.add_done_callback(_discard_outcome)


def _discard_outcome(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()
