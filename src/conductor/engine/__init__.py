"""Task orchestration engine."""

from conductor.engine.catalog import DEFAULT_CAPABILITIES, echo_adapter, register_defaults
from conductor.engine.health import HealthReport, build_health
from conductor.engine.metrics import MetricsStore
from conductor.engine.models import (
    Candidate,
    CapabilityDescriptor,
    Priority,
    ReasoningStep,
    SelectionTrace,
    TaskKind,
    TaskRecord,
    TaskRequest,
    TaskResult,
    TaskState,
    WorkerMetrics,
)
from conductor.engine.orchestrator import TaskOrchestrator, WorkerAdapter
from conductor.engine.reasoning import (
    CallableOracle,
    ChainOfThought,
    DemoOracle,
    ReasoningOracle,
    parse_selection,
)
from conductor.engine.registry import CapabilityRegistry, calculate_tag_overlap

__all__ = [
    "DEFAULT_CAPABILITIES",
    "CallableOracle",
    "Candidate",
    "CapabilityDescriptor",
    "CapabilityRegistry",
    "ChainOfThought",
    "DemoOracle",
    "HealthReport",
    "MetricsStore",
    "Priority",
    "ReasoningOracle",
    "ReasoningStep",
    "SelectionTrace",
    "TaskKind",
    "TaskOrchestrator",
    "TaskRecord",
    "TaskRequest",
    "TaskResult",
    "TaskState",
    "WorkerAdapter",
    "WorkerMetrics",
    "build_health",
    "calculate_tag_overlap",
    "echo_adapter",
    "parse_selection",
    "register_defaults",
]
