"""
Circuit Breaker — Stop Calling a Failing Worker for a Cooldown Period

State machine:
    closed    -> open       after ``failure_threshold`` consecutive failures
    open      -> half_open  once ``reset_timeout_ms`` has elapsed (on next call)
    half_open -> closed     probe succeeds
    half_open -> open       probe fails (timer restarts)

One breaker guards one worker. State lives behind the breaker's own lock, so
unrelated workers never contend with each other.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TypeVar

from conductor.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker for async operations."""

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout_ms: int = 30_000,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        if reset_timeout_ms < 0:
            raise ValueError(f"reset_timeout_ms must be >= 0, got {reset_timeout_ms}")

        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.name = name or "circuit"
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def get_state(self) -> CircuitState:
        """Current state. Never triggers a transition."""
        return self._state

    def reset(self) -> None:
        """Administrative reset back to closed."""
        with self._lock:
            self._failure_count = 0
            self._opened_at = None
            self._probe_in_flight = False
            self._set_state(CircuitState.CLOSED)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` unless the circuit is open.

        Raises:
            CircuitOpenError: without invoking ``operation`` while open, or
                while another caller's half-open probe is still in flight.
        """
        is_probe = self._admit()
        try:
            result = await operation()
        except asyncio.CancelledError:
            # Cancellation says nothing about the worker's health
            if is_probe:
                with self._lock:
                    self._probe_in_flight = False
            raise
        except Exception:
            self._on_failure(is_probe)
            raise
        self._on_success(is_probe)
        return result

    def _admit(self) -> bool:
        """Decide whether a call may proceed; returns True for a half-open probe."""
        with self._lock:
            if self._state is CircuitState.OPEN:
                elapsed_ms = (self._clock() - (self._opened_at or 0.0)) * 1000
                if elapsed_ms < self.reset_timeout_ms:
                    remaining = (self.reset_timeout_ms - elapsed_ms) / 1000
                    raise CircuitOpenError(
                        f"Circuit '{self.name}' is open; retry in {remaining:.1f}s"
                    )
                self._set_state(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(f"Circuit '{self.name}' is probing; call rejected")
                self._probe_in_flight = True
                return True

            return False

    def _on_success(self, is_probe: bool) -> None:
        with self._lock:
            if is_probe:
                self._probe_in_flight = False
                self._failure_count = 0
                self._set_state(CircuitState.CLOSED)
            elif self._state is CircuitState.CLOSED:
                self._failure_count = 0

    def _on_failure(self, is_probe: bool) -> None:
        with self._lock:
            if is_probe:
                self._probe_in_flight = False
                self._trip()
                return
            if self._state is not CircuitState.CLOSED:
                # Straggler from before the circuit opened
                return
            self._failure_count += 1
            if self._failure_count >= self.failure_threshold:
                self._trip()

    def _trip(self) -> None:
        self._opened_at = self._clock()
        self._set_state(CircuitState.OPEN)

    def _set_state(self, state: CircuitState) -> None:
        if state is self._state:
            return
        logger.warning(
            "Circuit %s: %s -> %s (failures=%d)",
            self.name,
            self._state.value,
            state.value,
            self._failure_count,
        )
        self._state = state
