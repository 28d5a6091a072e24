"""Tests for the task orchestrator."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest

from conductor.config import OracleSettings, ResilienceSettings, Settings
from conductor.engine import (
    CapabilityDescriptor,
    TaskOrchestrator,
    TaskRequest,
    TaskState,
    register_defaults,
)
from conductor.errors import (
    CancelledTaskError,
    CircuitOpenError,
    DuplicateRegistrationError,
    ErrorKind,
    NoCandidateError,
    ShuttingDownError,
    TaskTimeoutError,
    WorkerError,
    WorkerNotFoundError,
)
from conductor.resilience import CircuitState


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def fast_settings(**resilience: Any) -> Settings:
    return Settings(
        resilience=ResilienceSettings(**resilience),
        oracle=OracleSettings(timeout_ms=200, attempts=1, retry_delay_ms=0),
    )


def descriptor(
    worker_id: str, tags: set[str], confidence: float = 0.9, name: str | None = None
) -> CapabilityDescriptor:
    return CapabilityDescriptor(
        id=worker_id,
        name=name or worker_id,
        description=f"{worker_id} worker",
        expertise_tags=frozenset(tags),
        base_confidence=confidence,
    )


def task(
    tags: set[str], kind: str = "analysis", input: Any = "payload", **kwargs: Any
) -> TaskRequest:
    return TaskRequest(kind=kind, input=input, required_tags=frozenset(tags), **kwargs)


async def ok(payload: Any) -> dict[str, Any]:
    return {"echo": payload}


async def broken(payload: Any) -> None:
    raise RuntimeError("adapter exploded")


class TestRegistration:
    """Tests for worker registration."""

    def test_register_creates_breaker_and_metrics(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), ok)

        assert orchestrator.get_circuit_state("w1") is CircuitState.CLOSED
        assert orchestrator.get_metrics("w1").total_tasks == 0
        assert "w1" in orchestrator.get_metrics()

    def test_conflicting_registration(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), ok)

        orchestrator.register_worker(descriptor("w1", {"nlp"}), ok)
        with pytest.raises(DuplicateRegistrationError):
            orchestrator.register_worker(descriptor("w1", {"tts"}), ok)
        orchestrator.register_worker(descriptor("w1", {"tts"}), ok, replace=True)
        assert orchestrator.registry.get("w1").expertise_tags == frozenset({"tts"})

    def test_adapter_must_be_callable(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        with pytest.raises(TypeError):
            orchestrator.register_worker(descriptor("w1", {"nlp"}), object())

    def test_unknown_circuit(self) -> None:
        with pytest.raises(WorkerNotFoundError):
            TaskOrchestrator().get_circuit_state("ghost")

    def test_register_defaults(self) -> None:
        orchestrator = TaskOrchestrator()
        ids = register_defaults(orchestrator)
        assert len(ids) == 5
        assert orchestrator.health().status == "healthy"


class TestSubmit:
    """Tests for the submit workflow."""

    @pytest.mark.anyio
    async def test_single_match_completes(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"transcription"}, 0.9), ok)

        result = await orchestrator.submit(
            task({"transcription"}, kind="voice_processing", input="audio")
        )

        assert result.state is TaskState.COMPLETED
        assert result.assigned_worker == "w1"
        assert result.output == {"echo": "audio"}
        assert [s.action for s in result.trace] == [
            "ANALYZE_TASK",
            "EVALUATE_AGENTS",
            "SELECT_AGENT",
        ]
        assert result.final_reasoning
        assert result.confidence == pytest.approx((0.9 + 0.85 + 0.9) / 3)
        assert result.state_history == (
            TaskState.PENDING,
            TaskState.SELECTING,
            TaskState.EXECUTING,
            TaskState.COMPLETED,
        )

        metrics = orchestrator.get_metrics("w1")
        assert metrics.total_tasks == 1
        assert metrics.completed_tasks == 1

    @pytest.mark.anyio
    async def test_no_candidate_fails_without_execution(self) -> None:
        calls = []

        async def tracked(payload: Any) -> None:
            calls.append(payload)

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), tracked)

        with pytest.raises(NoCandidateError) as excinfo:
            await orchestrator.submit(task({"unknown-capability"}))

        result = excinfo.value.result
        assert result is not None
        assert result.state is TaskState.FAILED
        assert result.error is ErrorKind.NO_CANDIDATE
        assert result.assigned_worker is None
        assert TaskState.EXECUTING not in result.state_history
        assert calls == []
        assert orchestrator.metrics.totals() == (0, 0)

    @pytest.mark.anyio
    async def test_unparseable_oracle_falls_back_to_best_score(self) -> None:
        orchestrator = TaskOrchestrator(
            oracle=lambda prompt: "I cannot decide.", settings=fast_settings()
        )
        orchestrator.register_worker(descriptor("w1", {"nlp"}, 0.9), ok)
        orchestrator.register_worker(descriptor("w2", {"nlp"}, 0.7), ok)

        result = await orchestrator.submit(task({"nlp"}, kind="entity_extraction"))

        assert result.assigned_worker == "w1"
        assert result.succeeded

    @pytest.mark.anyio
    async def test_oracle_choice_is_honoured(self) -> None:
        class Picker:
            async def ask(self, prompt: str) -> str:
                return "beta" if "Select the best worker" in prompt else "Beta fits."

        orchestrator = TaskOrchestrator(oracle=Picker(), settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}, 0.9, name="Alpha"), ok)
        orchestrator.register_worker(descriptor("w2", {"nlp"}, 0.7, name="Beta"), ok)

        result = await orchestrator.submit(task({"nlp"}))

        assert result.assigned_worker == "w2"
        assert result.final_reasoning == "Beta fits."

    @pytest.mark.anyio
    async def test_oracle_failure_never_fails_task(self) -> None:
        def oracle(prompt: str) -> str:
            raise ConnectionError("provider down")

        orchestrator = TaskOrchestrator(oracle=oracle, settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}, 0.9, name="Alpha"), ok)
        orchestrator.register_worker(descriptor("w2", {"nlp"}, 0.7, name="Beta"), ok)

        result = await orchestrator.submit(task({"nlp"}, kind="entity_extraction"))

        assert result.succeeded
        assert result.assigned_worker == "w1"
        assert result.final_reasoning.startswith("Selected Alpha")

    @pytest.mark.anyio
    async def test_worker_error_wraps_cause(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), broken)

        with pytest.raises(WorkerError) as excinfo:
            await orchestrator.submit(task({"nlp"}))

        assert isinstance(excinfo.value.cause, RuntimeError)
        result = excinfo.value.result
        assert result is not None
        assert result.assigned_worker == "w1"
        assert result.error is ErrorKind.WORKER_ERROR
        assert "adapter exploded" in (result.error_message or "")
        assert orchestrator.get_metrics("w1").failed_tasks == 1

    @pytest.mark.anyio
    async def test_worker_timeout(self) -> None:
        async def slow(payload: Any) -> None:
            await asyncio.sleep(5)

        settings = fast_settings(kind_timeouts_ms={"analysis": 50})
        orchestrator = TaskOrchestrator(settings=settings)
        orchestrator.register_worker(descriptor("w1", {"nlp"}), slow)

        started = time.monotonic()
        with pytest.raises(TaskTimeoutError) as excinfo:
            await orchestrator.submit(task({"nlp"}))

        assert time.monotonic() - started < 2.0
        assert excinfo.value.result.error is ErrorKind.TIMEOUT
        assert orchestrator.get_metrics("w1").failed_tasks == 1

    @pytest.mark.anyio
    async def test_submit_timeout_bounds_worker_budget(self) -> None:
        async def slow(payload: Any) -> None:
            await asyncio.sleep(5)

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), slow)

        started = time.monotonic()
        with pytest.raises(TaskTimeoutError):
            await orchestrator.submit(task({"nlp"}), timeout=0.3)
        assert time.monotonic() - started < 2.0

    @pytest.mark.anyio
    async def test_slow_oracle_never_charges_the_worker(self) -> None:
        calls = []

        class SlowOracle:
            async def ask(self, prompt: str) -> str:
                await asyncio.sleep(1)
                return "w2"

        async def quick(payload: Any) -> str:
            calls.append(payload)
            await asyncio.sleep(0.01)
            return "done"

        orchestrator = TaskOrchestrator(
            oracle=SlowOracle(), settings=fast_settings(failure_threshold=3)
        )
        orchestrator.register_worker(descriptor("w1", {"nlp"}, 0.8), quick)
        orchestrator.register_worker(descriptor("w2", {"nlp"}, 0.8), quick)

        for _ in range(3):
            with pytest.raises(TaskTimeoutError) as excinfo:
                await orchestrator.submit(task({"nlp"}), timeout=0.05)
            result = excinfo.value.result
            assert result.error is ErrorKind.TIMEOUT
            assert TaskState.EXECUTING not in result.state_history
            assert result.assigned_worker is None

        assert calls == []
        for worker_id in ("w1", "w2"):
            assert orchestrator.get_circuit_state(worker_id) is CircuitState.CLOSED
            assert orchestrator.get_metrics(worker_id).failed_tasks == 0
        assert orchestrator.health().status == "healthy"

    @pytest.mark.anyio
    async def test_circuit_opens_after_repeated_failures(self) -> None:
        calls = []

        async def failing(payload: Any) -> None:
            calls.append(payload)
            raise RuntimeError("down")

        orchestrator = TaskOrchestrator(settings=fast_settings(failure_threshold=3))
        orchestrator.register_worker(descriptor("w1", {"nlp"}), failing)

        for _ in range(3):
            with pytest.raises(WorkerError):
                await orchestrator.submit(task({"nlp"}))

        with pytest.raises(CircuitOpenError) as excinfo:
            await orchestrator.submit(task({"nlp"}))

        assert len(calls) == 3
        assert excinfo.value.result.error is ErrorKind.CIRCUIT_OPEN
        assert orchestrator.get_circuit_state("w1") is CircuitState.OPEN
        assert orchestrator.health().status == "unhealthy"

    @pytest.mark.anyio
    async def test_one_open_circuit_degrades_health(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings(failure_threshold=1))
        orchestrator.register_worker(descriptor("bad", {"nlp"}), broken)
        orchestrator.register_worker(descriptor("good", {"tts"}), ok)

        with pytest.raises(WorkerError):
            await orchestrator.submit(task({"nlp"}))

        report = orchestrator.health()
        assert report.status == "degraded"
        assert report.workers == {"bad": "open", "good": "closed"}

    @pytest.mark.anyio
    async def test_sync_adapter_runs_in_thread(self) -> None:
        class Upper:
            def call(self, payload: str) -> str:
                return payload.upper()

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), Upper())

        result = await orchestrator.submit(task({"nlp"}, input="quiet"))
        assert result.output == "QUIET"


class TestCancellation:
    """Tests for cancelling submitted tasks."""

    @pytest.mark.anyio
    async def test_cancel_event_set_before_submit(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), ok)
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(CancelledTaskError) as excinfo:
            await orchestrator.submit(task({"nlp"}), cancel=cancel)

        assert excinfo.value.result.error is ErrorKind.CANCELLED
        assert orchestrator.metrics.totals() == (0, 0)

    @pytest.mark.anyio
    async def test_cancel_during_execution(self) -> None:
        started = asyncio.Event()

        async def slow(payload: Any) -> None:
            started.set()
            await asyncio.sleep(5)

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), slow)
        cancel = asyncio.Event()

        submission = asyncio.create_task(orchestrator.submit(task({"nlp"}), cancel=cancel))
        await started.wait()
        cancel.set()

        with pytest.raises(CancelledTaskError) as excinfo:
            await submission

        result = excinfo.value.result
        assert result.state is TaskState.FAILED
        assert result.assigned_worker == "w1"
        assert orchestrator.get_metrics("w1").failed_tasks == 1
        assert orchestrator.get_circuit_state("w1") is CircuitState.CLOSED

    @pytest.mark.anyio
    async def test_coroutine_cancellation_marks_task(self) -> None:
        started = asyncio.Event()

        async def slow(payload: Any) -> None:
            started.set()
            await asyncio.sleep(5)

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), slow)
        request = task({"nlp"})

        submission = asyncio.create_task(orchestrator.submit(request))
        await started.wait()
        submission.cancel()

        with pytest.raises(asyncio.CancelledError):
            await submission

        snapshot = orchestrator.get_task(request.id)
        assert snapshot is not None
        assert snapshot.error is ErrorKind.CANCELLED


class TestConcurrency:
    """Tests for concurrent submissions and shutdown."""

    @pytest.mark.anyio
    async def test_submit_many_starts_by_priority(self) -> None:
        order: list[str] = []

        async def record(payload: str) -> str:
            order.append(payload)
            return payload

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), record)

        requests = [
            task({"nlp"}, input="low", priority="low"),
            task({"nlp"}, input="critical", priority="critical"),
            task({"nlp"}, input="medium"),
            task({"nlp"}, input="high", priority="high"),
        ]
        results = await orchestrator.submit_many(requests)

        assert [r.output for r in results] == ["low", "critical", "medium", "high"]
        assert order == ["critical", "high", "medium", "low"]

    @pytest.mark.anyio
    async def test_submit_many_returns_failures_in_place(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), ok)

        results = await orchestrator.submit_many([task({"nlp"}), task({"missing"})])

        assert results[0].succeeded
        assert isinstance(results[1], NoCandidateError)

    @pytest.mark.anyio
    async def test_concurrent_submissions_update_metrics(self) -> None:
        async def quick(payload: Any) -> Any:
            await asyncio.sleep(0.01)
            return payload

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), quick)

        results = await asyncio.gather(*(orchestrator.submit(task({"nlp"})) for _ in range(25)))

        assert all(r.succeeded for r in results)
        assert orchestrator.get_metrics("w1").total_tasks == 25
        assert len(orchestrator.recent_tasks(100)) == 25

    @pytest.mark.anyio
    async def test_shutdown_drains_and_rejects(self) -> None:
        release = asyncio.Event()

        async def waiting(payload: Any) -> str:
            await release.wait()
            return "done"

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), waiting)

        in_flight = asyncio.create_task(orchestrator.submit(task({"nlp"})))
        await asyncio.sleep(0.05)

        shutdown = asyncio.create_task(orchestrator.shutdown(drain_timeout=2))
        await asyncio.sleep(0)
        with pytest.raises(ShuttingDownError):
            await orchestrator.submit(task({"nlp"}))

        release.set()
        assert await shutdown == 0
        assert (await in_flight).output == "done"
        assert orchestrator.system_status()["accepting"] is False

    @pytest.mark.anyio
    async def test_shutdown_reports_stragglers(self) -> None:
        async def hang(payload: Any) -> None:
            await asyncio.sleep(5)

        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), hang)

        in_flight = asyncio.create_task(orchestrator.submit(task({"nlp"})))
        await asyncio.sleep(0.05)

        assert await orchestrator.shutdown(drain_timeout=0.1) == 1
        in_flight.cancel()
        with pytest.raises(asyncio.CancelledError):
            await in_flight


class TestIntrospection:
    """Tests for history and status."""

    @pytest.mark.anyio
    async def test_history_is_bounded_and_newest_first(self) -> None:
        settings = fast_settings()
        settings.history_size = 3
        orchestrator = TaskOrchestrator(settings=settings)
        orchestrator.register_worker(descriptor("w1", {"nlp"}), ok)

        submitted = [task({"nlp"}, input=str(i)) for i in range(5)]
        for request in submitted:
            await orchestrator.submit(request)

        recent = orchestrator.recent_tasks(10)
        assert [r.task_id for r in recent] == [r.id for r in reversed(submitted[2:])]
        assert orchestrator.get_task(submitted[0].id) is None
        assert orchestrator.recent_tasks(0) == []

    @pytest.mark.anyio
    async def test_system_status(self) -> None:
        orchestrator = TaskOrchestrator(settings=fast_settings())
        orchestrator.register_worker(descriptor("w1", {"nlp"}), ok)
        orchestrator.register_worker(descriptor("w2", {"tts"}), broken)

        await orchestrator.submit(task({"nlp"}))
        with pytest.raises(WorkerError):
            await orchestrator.submit(task({"tts"}))

        status = orchestrator.system_status()
        assert status["registered_workers"] == 2
        assert status["total_tasks_processed"] == 2
        assert status["overall_success_rate"] == pytest.approx(0.5)
        assert status["in_flight_tasks"] == 0

        described = {w["id"]: w for w in orchestrator.describe_workers()}
        assert described["w2"]["metrics"]["failed_tasks"] == 1
        assert described["w1"]["circuit"] == "closed"
