"""
Selection Reasoning — Chain of Thought over Candidate Workers

Records the analyze -> match -> select steps for every task and consults a
reasoning oracle to break ties and justify the choice. The oracle is
optional at every point: when it fails, times out or answers with something
unparseable, selection falls back to the highest-scored candidate and the
justification falls back to a template. Oracle trouble never fails a task.

All free-text parsing of oracle answers lives in this module, so a
structured protocol can replace it without touching the orchestrator.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol, runtime_checkable

from conductor.config import OracleSettings
from conductor.engine.models import Candidate, SelectionTrace, TaskRequest
from conductor.errors import OracleUnavailableError
from conductor.resilience import retry_operation, with_timeout

logger = logging.getLogger(__name__)

ANALYZE_CONFIDENCE = 0.9
EVALUATE_CONFIDENCE = 0.85


@runtime_checkable
class ReasoningOracle(Protocol):
    """Black-box text oracle used for tie-breaking and justifications."""

    async def ask(self, prompt: str) -> str: ...


class DemoOracle:
    """Provider-less oracle; answers without naming any candidate."""

    async def ask(self, prompt: str) -> str:
        return f"Demo response for: {prompt[:100]}..."


class CallableOracle:
    """Adapts a plain ``fn(prompt) -> str`` (sync or async) to ``ReasoningOracle``."""

    def __init__(self, fn: Callable[[str], str | Awaitable[str]]) -> None:
        self._fn = fn

    async def ask(self, prompt: str) -> str:
        answer = self._fn(prompt)
        if inspect.isawaitable(answer):
            answer = await answer
        return answer


def as_oracle(
    oracle: ReasoningOracle | Callable[[str], str | Awaitable[str]] | None,
) -> ReasoningOracle:
    if oracle is None:
        return DemoOracle()
    if isinstance(oracle, ReasoningOracle):
        if inspect.iscoroutinefunction(oracle.ask):
            return oracle
        return CallableOracle(oracle.ask)
    if callable(oracle):
        return CallableOracle(oracle)
    raise TypeError(f"Unsupported oracle: {oracle!r}")


def build_selection_prompt(request: TaskRequest, candidates: Sequence[Candidate]) -> str:
    """Prompt asking the oracle to pick one worker by name."""
    agents = "\n".join(
        f"- {c.name}: {c.descriptor.description} (Confidence: {c.score:.2f})"
        for c in candidates
    )
    return (
        "You are a task coordinator. Select the best worker for this task.\n\n"
        "Task Details:\n"
        f"- Type: {request.kind.value}\n"
        f"- Priority: {request.priority.value}\n"
        f"- Required Capabilities: {', '.join(sorted(request.required_tags))}\n\n"
        "Available Workers:\n"
        f"{agents}\n\n"
        "Consider:\n"
        "1. Worker expertise alignment with task requirements\n"
        "2. Task priority and complexity\n\n"
        "Respond with only the worker name that would be best for this task."
    )


def build_justification_prompt(
    request: TaskRequest, chosen: Candidate, trace: SelectionTrace
) -> str:
    steps = "\n".join(f"{s.step}. {s.reasoning}" for s in trace.steps)
    return (
        "Generate a clear explanation of why this worker selection makes sense.\n\n"
        f"Task: {request.kind.value}\n"
        f"Selected Worker: {chosen.name}\n"
        f"Worker Expertise: {', '.join(sorted(chosen.descriptor.expertise_tags))}\n\n"
        "Chain of Thought Steps:\n"
        f"{steps}\n\n"
        "Provide a concise final reasoning (2-3 sentences)."
    )


def templated_justification(request: TaskRequest, chosen: Candidate) -> str:
    return (
        f"Selected {chosen.name} as it best matches the required capabilities "
        f"for {request.kind.value} with high confidence."
    )


def parse_selection(response: str, candidates: Sequence[Candidate]) -> Candidate | None:
    """First candidate whose name appears in the response (case-insensitive)."""
    text = response.strip().lower()
    if not text:
        return None
    for candidate in candidates:
        if candidate.name.lower() in text:
            return candidate
    return None


class ChainOfThought:
    """Runs the selection steps for one task at a time; holds no per-task state."""

    def __init__(self, oracle: ReasoningOracle, settings: OracleSettings | None = None) -> None:
        self.oracle = oracle
        self.settings = settings or OracleSettings()

    def analyze(self, request: TaskRequest, trace: SelectionTrace) -> None:
        trace.add(
            "ANALYZE_TASK",
            f"Analyzing task of type '{request.kind.value}' "
            f"with priority '{request.priority.value}'",
            ANALYZE_CONFIDENCE,
        )

    def evaluate(
        self, request: TaskRequest, candidates: Sequence[Candidate], trace: SelectionTrace
    ) -> None:
        trace.add(
            "EVALUATE_AGENTS",
            f"Found {len(candidates)} suitable workers for capabilities: "
            f"{', '.join(sorted(request.required_tags))}",
            EVALUATE_CONFIDENCE,
            result=", ".join(c.name for c in candidates),
        )

    async def select(
        self,
        request: TaskRequest,
        candidates: Sequence[Candidate],
        trace: SelectionTrace,
        deadline: float,
    ) -> Candidate:
        """Pick one of ``candidates`` (non-empty, sorted by score)."""
        chosen = candidates[0]

        if len(candidates) > 1:
            prompt = build_selection_prompt(request, candidates)
            try:
                answer = await self._query(prompt, deadline)
            except OracleUnavailableError as exc:
                logger.warning(
                    "Oracle selection failed for %s, using highest-scored worker: %s",
                    request.id,
                    exc,
                )
            else:
                trace.used_oracle = True
                parsed = parse_selection(answer, candidates)
                if parsed is None:
                    logger.warning(
                        "Oracle answer named no candidate for %s, using highest-scored worker",
                        request.id,
                    )
                else:
                    chosen = parsed

        trace.add(
            "SELECT_AGENT",
            f"Selected worker '{chosen.name}' based on expertise match "
            f"(score {chosen.score:.2f})",
            chosen.score,
            result=chosen.name,
        )
        trace.selected_worker = chosen.worker_id
        return chosen

    async def finalize(
        self,
        request: TaskRequest,
        chosen: Candidate,
        trace: SelectionTrace,
        deadline: float,
    ) -> str:
        """Store a justification on the trace; never raises oracle errors."""
        try:
            text = await self._query(build_justification_prompt(request, chosen, trace), deadline)
        except OracleUnavailableError as exc:
            logger.warning("Oracle justification failed for %s: %s", request.id, exc)
            text = ""

        trace.final_reasoning = text.strip() or templated_justification(request, chosen)
        return trace.final_reasoning

    async def _query(self, prompt: str, deadline: float) -> str:
        """Ask the oracle within the remaining budget, retrying transient failures."""

        async def attempt() -> str:
            remaining_ms = (deadline - time.monotonic()) * 1000
            if remaining_ms <= 0:
                raise OracleUnavailableError("No time left for the oracle")
            budget_ms = min(self.settings.timeout_ms, remaining_ms)
            return await with_timeout(budget_ms, self.oracle.ask(prompt))

        try:
            answer = await retry_operation(
                attempt,
                max_retries=max(1, self.settings.attempts),
                delay=self.settings.retry_delay_ms / 1000,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise OracleUnavailableError(f"Oracle query failed: {exc}") from exc

        return answer if isinstance(answer, str) else str(answer or "")
