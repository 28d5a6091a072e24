"""Task Orchestrator - Routes work items to the best-suited registered worker."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from conductor.config import Settings
from conductor.engine.health import HealthReport, build_health
from conductor.engine.metrics import MetricsStore
from conductor.engine.models import (
    Candidate,
    CapabilityDescriptor,
    TaskRecord,
    TaskRequest,
    TaskResult,
    TaskState,
    WorkerMetrics,
)
from conductor.engine.reasoning import ChainOfThought, ReasoningOracle, as_oracle
from conductor.engine.registry import CapabilityRegistry
from conductor.errors import (
    CancelledTaskError,
    NoCandidateError,
    OrchestrationError,
    ShuttingDownError,
    TaskTimeoutError,
    WorkerError,
    WorkerNotFoundError,
)
from conductor.resilience import CircuitBreaker, CircuitState, abandon, with_timeout

logger = logging.getLogger(__name__)

# fn(input) -> output, sync or async; objects exposing .call(input) also work
WorkerAdapter = Callable[[Any], Any]


class TaskOrchestrator:
    """
    Central coordinator for task routing and execution.

    Workflow per task:
    1. Analyze the task (kind, priority)
    2. Match registered capabilities against the required tags
    3. Select a worker (oracle tie-break when several match)
    4. Finalize a human-readable justification
    5. Execute through the worker's circuit breaker and a timeout
    6. Record the outcome in the metrics store

    One instance per process; pass it to whoever needs to submit work.
    """

    POLL_INTERVAL = 0.05  # seconds, used while draining on shutdown

    def __init__(
        self,
        oracle: ReasoningOracle | Callable[[str], Any] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = CapabilityRegistry()
        self.metrics = MetricsStore()
        self.reasoner = ChainOfThought(as_oracle(oracle), self.settings.oracle)
        self._adapters: dict[str, WorkerAdapter] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._history: OrderedDict[str, TaskRecord] = OrderedDict()
        self._in_flight: dict[str, TaskRecord] = {}
        self._accepting = True
        self._started = time.monotonic()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_worker(
        self,
        descriptor: CapabilityDescriptor,
        adapter: WorkerAdapter | Any,
        *,
        replace: bool = False,
    ) -> None:
        """
        Register a worker capability together with the adapter that runs it.

        Re-registering an identical descriptor only refreshes the adapter.
        A different descriptor under a known id raises
        ``DuplicateRegistrationError`` unless ``replace=True``.
        """
        call = _resolve_adapter(adapter)
        self.registry.register(descriptor, replace=replace)
        self._adapters[descriptor.id] = call
        self.metrics.ensure(descriptor.id)
        if descriptor.id not in self._breakers:
            self._breakers[descriptor.id] = CircuitBreaker(
                failure_threshold=self.settings.resilience.failure_threshold,
                reset_timeout_ms=self.settings.resilience.reset_timeout_ms,
                name=descriptor.id,
            )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        request: TaskRequest,
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> TaskResult:
        """
        Run a task to a terminal state.

        Args:
            request: Task to run
            timeout: Overall ceiling in seconds (defaults to settings)
            cancel: Event that aborts the task when set

        Returns:
            Snapshot of the completed task

        Raises:
            OrchestrationError: the specific failure kind; ``.result`` holds
                the failed task snapshot
        """
        if not self._accepting:
            raise ShuttingDownError(f"Rejected task {request.id}: orchestrator is shutting down")

        ceiling_ms = self.settings.submit_ceiling_ms if timeout is None else timeout * 1000
        deadline = time.monotonic() + ceiling_ms / 1000

        record = TaskRecord(request)
        self._remember(record)
        self._in_flight[record.task_id] = record
        try:
            return await self._run(record, deadline, cancel)
        finally:
            self._in_flight.pop(record.task_id, None)

    async def submit_many(
        self,
        requests: Sequence[TaskRequest],
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[TaskResult | BaseException]:
        """
        Submit several tasks concurrently.

        Tasks start in priority order (critical first, submission order within
        a priority); results come back in input order, failures as exceptions.
        """
        order = sorted(range(len(requests)), key=lambda i: -requests[i].priority.rank)
        tasks: dict[int, asyncio.Task[TaskResult]] = {}
        for index in order:
            tasks[index] = asyncio.create_task(
                self.submit(requests[index], timeout=timeout, cancel=cancel)
            )
        return list(
            await asyncio.gather(*(tasks[i] for i in range(len(requests))), return_exceptions=True)
        )

    async def _run(
        self, record: TaskRecord, deadline: float, cancel: asyncio.Event | None
    ) -> TaskResult:
        record.transition(TaskState.SELECTING)

        try:
            chosen = await self._until_cancelled(self._choose(record, deadline), cancel)
        except OrchestrationError as exc:
            self._fail(record, exc)
            raise
        except asyncio.CancelledError:
            self._fail(record, CancelledTaskError("Submit was cancelled during selection"))
            raise

        worker_id = chosen.worker_id
        if time.monotonic() >= deadline:
            # Worker never called: no breaker or metrics entry
            expired = TaskTimeoutError(
                f"Deadline expired during selection; {worker_id} was not called"
            )
            self._fail(record, expired)
            raise expired

        record.assigned_worker = worker_id
        record.transition(TaskState.EXECUTING)
        started = time.monotonic()

        try:
            output = await self._until_cancelled(
                self._execute(worker_id, record.request, deadline), cancel
            )
        except OrchestrationError as exc:
            self.metrics.record(worker_id, False, _elapsed_ms(started))
            self._fail(record, exc)
            raise
        except asyncio.CancelledError:
            self.metrics.record(worker_id, False, _elapsed_ms(started))
            self._fail(record, CancelledTaskError("Submit was cancelled during execution"))
            raise

        latency_ms = _elapsed_ms(started)
        self.metrics.record(worker_id, True, latency_ms)
        record.complete(output)
        logger.info(
            "Task %s completed by %s in %.0fms (confidence %.2f)",
            record.task_id,
            worker_id,
            latency_ms,
            record.trace.confidence,
        )
        return record.snapshot()

    async def _choose(self, record: TaskRecord, deadline: float) -> Candidate:
        """Chain of thought: analyze -> match -> select -> finalize."""
        request = record.request
        trace = record.trace

        self.reasoner.analyze(request, trace)
        candidates = self.registry.find_by_tags(request.required_tags)
        self.reasoner.evaluate(request, candidates, trace)

        if not candidates:
            raise NoCandidateError(
                f"No worker matches required tags: {', '.join(sorted(request.required_tags))}"
            )

        chosen = await self.reasoner.select(request, candidates, trace, deadline)
        await self.reasoner.finalize(request, chosen, trace, deadline)

        logger.info(
            "Task %s -> %s (confidence %.2f): %s",
            record.task_id,
            chosen.worker_id,
            trace.confidence,
            trace.final_reasoning,
        )
        return chosen

    async def _execute(self, worker_id: str, request: TaskRequest, deadline: float) -> Any:
        adapter = self._adapters.get(worker_id)
        if adapter is None:
            raise WorkerNotFoundError(f"Worker {worker_id} not found in active adapters")

        breaker = self._breakers[worker_id]
        remaining_ms = (deadline - time.monotonic()) * 1000
        budget_ms = min(self.settings.resilience.timeout_for(request.kind), remaining_ms)

        async def guarded_call() -> Any:
            try:
                return await with_timeout(budget_ms, _invoke(adapter, request.input))
            except OrchestrationError:
                raise
            except Exception as exc:
                raise WorkerError(cause=exc) from exc

        return await breaker.execute(guarded_call)

    async def _until_cancelled(
        self, operation: Awaitable[Any], cancel: asyncio.Event | None
    ) -> Any:
        """Await ``operation`` unless ``cancel`` fires first; then abandon it."""
        if cancel is None:
            return await operation
        if cancel.is_set():
            if inspect.iscoroutine(operation):
                operation.close()
            raise CancelledTaskError("Task was cancelled before it started")

        task = asyncio.ensure_future(operation)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            abandon(task)
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        abandon(task)
        raise CancelledTaskError("Task was cancelled")

    def _fail(self, record: TaskRecord, error: OrchestrationError) -> None:
        record.fail(error.kind, str(error))
        error.result = record.snapshot()
        logger.warning("Task %s failed (%s): %s", record.task_id, error.kind.value, error)

    def _remember(self, record: TaskRecord) -> None:
        self._history[record.task_id] = record
        while len(self._history) > self.settings.history_size:
            self._history.popitem(last=False)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> TaskResult | None:
        record = self._history.get(task_id)
        return record.snapshot() if record else None

    def recent_tasks(self, limit: int = 20) -> list[TaskResult]:
        """Most recent tasks first."""
        records = list(self._history.values())[-limit:] if limit > 0 else []
        return [r.snapshot() for r in reversed(records)]

    def get_metrics(self, worker_id: str | None = None) -> WorkerMetrics | dict[str, WorkerMetrics]:
        if worker_id is not None:
            return self.metrics.get(worker_id)
        return self.metrics.get_all()

    def get_circuit_state(self, worker_id: str) -> CircuitState:
        breaker = self._breakers.get(worker_id)
        if breaker is None:
            raise WorkerNotFoundError(f"Worker '{worker_id}' is not registered")
        return breaker.get_state()

    def circuit_states(self) -> dict[str, CircuitState]:
        return {worker_id: b.get_state() for worker_id, b in self._breakers.items()}

    def describe_workers(self) -> list[dict[str, Any]]:
        """Descriptors joined with their metrics and circuit state."""
        return [
            {
                **descriptor.to_dict(),
                "circuit": self.get_circuit_state(descriptor.id).value,
                "metrics": self.metrics.get(descriptor.id).to_dict(),
            }
            for descriptor in self.registry.descriptors()
        ]

    def system_status(self) -> dict[str, Any]:
        total, completed = self.metrics.totals()
        return {
            "accepting": self._accepting,
            "registered_workers": len(self.registry),
            "active_adapters": len(self._adapters),
            "in_flight_tasks": len(self._in_flight),
            "total_tasks_processed": total,
            "overall_success_rate": completed / total if total else 0.0,
        }

    def health(self) -> HealthReport:
        return build_health(self.circuit_states(), time.monotonic() - self._started)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self, drain_timeout: float = 30.0) -> int:
        """
        Stop accepting tasks and wait for in-flight ones to finish.

        Returns:
            Number of tasks still in flight when the drain timeout expired
        """
        self._accepting = False
        logger.info("Shutting down: draining %d in-flight task(s)", len(self._in_flight))

        deadline = time.monotonic() + drain_timeout
        while self._in_flight and time.monotonic() < deadline:
            await asyncio.sleep(self.POLL_INTERVAL)

        if self._in_flight:
            logger.warning("Shutdown drain timed out with %d task(s) in flight", len(self._in_flight))
        return len(self._in_flight)


def _resolve_adapter(adapter: WorkerAdapter | Any) -> WorkerAdapter:
    call = getattr(adapter, "call", None)
    if callable(call):
        return call
    if callable(adapter):
        return adapter
    raise TypeError(f"Worker adapter must be callable or expose .call(input), got {adapter!r}")


async def _invoke(adapter: WorkerAdapter, payload: Any) -> Any:
    """Run an adapter; sync adapters go to a thread so a timeout can abandon them."""
    if inspect.iscoroutinefunction(adapter):
        return await adapter(payload)
    result = await asyncio.to_thread(adapter, payload)
    if inspect.isawaitable(result):
        result = await result
    return result


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000
