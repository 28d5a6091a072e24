"""
Orchestration Data Models

Capabilities, task requests, the task lifecycle record and the immutable
snapshots handed back to callers.
"""

from __future__ import annotations

import base64
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from conductor.errors import ERRORS_BY_KIND, ErrorKind, InvalidTransitionError


class TaskKind(StrEnum):
    """Kinds of work the orchestrator routes."""

    VOICE_PROCESSING = "voice_processing"
    ENTITY_EXTRACTION = "entity_extraction"
    RESPONSE_GENERATION = "response_generation"
    TTS = "tts"
    ANALYSIS = "analysis"


class Priority(StrEnum):
    """Task priority. Orders queued submissions only; never preempts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class TaskState(StrEnum):
    """Task lifecycle states."""

    PENDING = "pending"
    SELECTING = "selecting"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED})

ALLOWED_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.SELECTING}),
    TaskState.SELECTING: frozenset({TaskState.EXECUTING, TaskState.FAILED}),
    TaskState.EXECUTING: frozenset({TaskState.COMPLETED, TaskState.FAILED}),
    TaskState.COMPLETED: frozenset(),
    TaskState.FAILED: frozenset(),
}


def _normalize_tags(tags: Iterable[str]) -> frozenset[str]:
    if isinstance(tags, str):
        tags = [tags]
    return frozenset(t.strip() for t in tags if t and t.strip())


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Declared capability of a worker."""

    id: str
    name: str
    description: str
    expertise_tags: frozenset[str]
    base_confidence: float = 0.5

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("id cannot be empty")
        if not 0.0 <= self.base_confidence <= 1.0:
            raise ValueError(
                f"base_confidence must be in [0.0, 1.0], got {self.base_confidence}"
            )
        object.__setattr__(self, "expertise_tags", _normalize_tags(self.expertise_tags))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["expertise_tags"] = sorted(self.expertise_tags)
        return data


def new_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class TaskRequest:
    """A unit of work submitted to the orchestrator. Never mutated after creation."""

    kind: TaskKind
    input: Any
    required_tags: frozenset[str]
    priority: Priority = Priority.MEDIUM
    metadata: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_task_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", TaskKind(self.kind))
        object.__setattr__(self, "priority", Priority(self.priority))
        tags = _normalize_tags(self.required_tags)
        if not tags:
            raise ValueError("required_tags cannot be empty")
        object.__setattr__(self, "required_tags", tags)
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class Candidate:
    """A registered worker that survived capability matching."""

    worker_id: str
    descriptor: CapabilityDescriptor
    score: float
    overlap: int

    @property
    def name(self) -> str:
        return self.descriptor.name


@dataclass(frozen=True)
class ReasoningStep:
    """One step of the selection chain of thought."""

    step: int
    action: str
    reasoning: str
    confidence: float
    result: str | None = None


@dataclass
class SelectionTrace:
    """Ordered reasoning steps plus the final justification."""

    steps: list[ReasoningStep] = field(default_factory=list)
    final_reasoning: str = ""
    selected_worker: str | None = None
    used_oracle: bool = False

    def add(
        self, action: str, reasoning: str, confidence: float, result: str | None = None
    ) -> ReasoningStep:
        step = ReasoningStep(
            step=len(self.steps) + 1,
            action=action,
            reasoning=reasoning,
            confidence=confidence,
            result=result,
        )
        self.steps.append(step)
        return step

    @property
    def confidence(self) -> float:
        """Arithmetic mean of step confidences."""
        if not self.steps:
            return 0.0
        return sum(s.confidence for s in self.steps) / len(self.steps)


@dataclass(frozen=True)
class TaskResult:
    """Immutable snapshot of a task record."""

    task_id: str
    kind: TaskKind
    priority: Priority
    state: TaskState
    state_history: tuple[TaskState, ...]
    assigned_worker: str | None
    output: Any
    error: ErrorKind | None
    error_message: str | None
    trace: tuple[ReasoningStep, ...]
    final_reasoning: str
    confidence: float
    duration_ms: float

    @property
    def succeeded(self) -> bool:
        return self.state is TaskState.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        output = self.output
        if isinstance(output, (bytes, bytearray)):
            output = base64.b64encode(output).decode("ascii")
        data: dict[str, Any] = {
            "task_id": self.task_id,
            "kind": self.kind.value,
            "priority": self.priority.value,
            "state": self.state.value,
            "state_history": [s.value for s in self.state_history],
            "assigned_worker": self.assigned_worker,
            "output": output,
            "error": self.error.value if self.error else None,
            "error_message": self.error_message,
            "trace": [asdict(s) for s in self.trace],
            "final_reasoning": self.final_reasoning,
            "confidence": round(self.confidence, 4),
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.error is not None:
            data["message"] = ERRORS_BY_KIND[self.error].user_message
        return data


@dataclass
class TaskRecord:
    """
    Lifecycle record for one submitted task.

    Owned by the orchestrator; callers only ever see ``snapshot()`` copies.
    States only move forward along ``ALLOWED_TRANSITIONS``.
    """

    request: TaskRequest
    state: TaskState = TaskState.PENDING
    history: list[TaskState] = field(default_factory=lambda: [TaskState.PENDING])
    assigned_worker: str | None = None
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    error: ErrorKind | None = None
    error_message: str | None = None
    result: Any = None
    trace: SelectionTrace = field(default_factory=SelectionTrace)
    _started: float = field(default_factory=time.monotonic, repr=False)
    _finished: float | None = field(default=None, repr=False)

    @property
    def task_id(self) -> str:
        return self.request.id

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: TaskState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Task {self.task_id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state
        self.history.append(new_state)
        if new_state in TERMINAL_STATES:
            self.end_time = time.time()
            self._finished = time.monotonic()

    def complete(self, output: Any) -> None:
        self.result = output
        self.transition(TaskState.COMPLETED)

    def fail(self, kind: ErrorKind, message: str) -> None:
        self.error = kind
        self.error_message = message
        self.transition(TaskState.FAILED)

    def elapsed_ms(self) -> float:
        end = self._finished if self._finished is not None else time.monotonic()
        return (end - self._started) * 1000

    def snapshot(self) -> TaskResult:
        return TaskResult(
            task_id=self.task_id,
            kind=self.request.kind,
            priority=self.request.priority,
            state=self.state,
            state_history=tuple(self.history),
            assigned_worker=self.assigned_worker,
            output=self.result,
            error=self.error,
            error_message=self.error_message,
            trace=tuple(self.trace.steps),
            final_reasoning=self.trace.final_reasoning,
            confidence=self.trace.confidence,
            duration_ms=self.elapsed_ms(),
        )


@dataclass(frozen=True)
class WorkerMetrics:
    """Per-worker performance counters (snapshot)."""

    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_response_time_ms: float = 0.0
    success_rate: float = 0.0
    last_updated: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
