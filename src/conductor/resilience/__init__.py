"""Resilience primitives guarding every worker invocation."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .retry import retry_operation
from .timeout import abandon, with_timeout

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "abandon",
    "retry_operation",
    "with_timeout",
]
