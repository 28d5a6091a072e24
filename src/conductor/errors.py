"""Orchestration error taxonomy.

Every failure a caller can observe has its own class and ``ErrorKind`` so the
embedding layer can tell "nothing can handle this task" apart from "the
assigned worker failed" and "the worker is temporarily disabled".
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from conductor.engine.models import TaskResult


class ErrorKind(StrEnum):
    """Inspectable failure kinds."""

    NO_CANDIDATE = "no_candidate"
    WORKER_NOT_FOUND = "worker_not_found"
    DUPLICATE_REGISTRATION = "duplicate_registration"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"
    WORKER_ERROR = "worker_error"
    CANCELLED = "cancelled"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    SHUTTING_DOWN = "shutting_down"


class OrchestrationError(Exception):
    """Base class for all orchestration outcomes other than success."""

    kind: ErrorKind = ErrorKind.WORKER_ERROR
    user_message = "An unexpected error occurred. Please try again."
    status_code = 500
    retryable = True

    def __init__(self, message: str = "", *, result: TaskResult | None = None) -> None:
        super().__init__(message or self.user_message)
        self.result = result

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "error": self.kind.value,
            "message": self.user_message,
            "details": str(self),
        }
        if self.result is not None:
            payload["task_id"] = self.result.task_id
        return payload


class NoCandidateError(OrchestrationError):
    kind = ErrorKind.NO_CANDIDATE
    user_message = "Your task could not be matched to any registered capability."
    status_code = 404
    retryable = False


class WorkerNotFoundError(OrchestrationError):
    kind = ErrorKind.WORKER_NOT_FOUND
    user_message = "The selected worker is not available in this process."
    status_code = 404
    retryable = False


class DuplicateRegistrationError(OrchestrationError):
    kind = ErrorKind.DUPLICATE_REGISTRATION
    user_message = "A different worker is already registered under this id."
    status_code = 409
    retryable = False


class TaskTimeoutError(OrchestrationError):
    kind = ErrorKind.TIMEOUT
    user_message = "The operation took too long to complete. Please try again."
    status_code = 504


class CircuitOpenError(OrchestrationError):
    kind = ErrorKind.CIRCUIT_OPEN
    user_message = "The system is temporarily overloaded. Please try again shortly."
    status_code = 503
    retryable = False


class WorkerError(OrchestrationError):
    """Wraps the adapter's own failure; the original exception is ``cause``."""

    kind = ErrorKind.WORKER_ERROR
    user_message = "The assigned worker failed to process your task."
    status_code = 502

    def __init__(
        self,
        message: str = "",
        *,
        cause: BaseException | None = None,
        result: TaskResult | None = None,
    ) -> None:
        if not message and cause is not None:
            message = f"{type(cause).__name__}: {cause}"
        super().__init__(message, result=result)
        self.cause = cause


class CancelledTaskError(OrchestrationError):
    kind = ErrorKind.CANCELLED
    user_message = "The task was cancelled before it finished."
    status_code = 499
    retryable = False


class OracleUnavailableError(OrchestrationError):
    """Raised inside the reasoning layer only; never reaches ``submit`` callers."""

    kind = ErrorKind.ORACLE_UNAVAILABLE
    user_message = "The reasoning service is temporarily unavailable."
    status_code = 503
    retryable = False


class ShuttingDownError(OrchestrationError):
    kind = ErrorKind.SHUTTING_DOWN
    user_message = "The orchestrator is shutting down and no longer accepts tasks."
    status_code = 503
    retryable = False


class InvalidTransitionError(RuntimeError):
    """A task record was asked to move along an edge the lifecycle forbids."""


ERRORS_BY_KIND: dict[ErrorKind, type[OrchestrationError]] = {
    cls.kind: cls
    for cls in (
        NoCandidateError,
        WorkerNotFoundError,
        DuplicateRegistrationError,
        TaskTimeoutError,
        CircuitOpenError,
        WorkerError,
        CancelledTaskError,
        OracleUnavailableError,
        ShuttingDownError,
    )
}
