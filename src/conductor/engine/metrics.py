"""
Metrics Store — Per-Worker Performance Counters

Rolling counters updated once per finished task:
- total/completed/failed task counts
- success_rate = completed / total
- average_response_time_ms via incremental mean:
      new_avg = old_avg + (latency - old_avg) / total

Each worker's counters sit behind that worker's own lock, so updates for the
same worker are linearizable while unrelated workers never contend.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from conductor.engine.models import WorkerMetrics, utc_now_iso


@dataclass
class _Counters:
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_response_time_ms: float = 0.0
    success_rate: float = 0.0
    last_updated: str | None = None

    def snapshot(self) -> WorkerMetrics:
        with self.lock:
            return WorkerMetrics(
                total_tasks=self.total_tasks,
                completed_tasks=self.completed_tasks,
                failed_tasks=self.failed_tasks,
                average_response_time_ms=self.average_response_time_ms,
                success_rate=self.success_rate,
                last_updated=self.last_updated,
            )


class MetricsStore:
    """In-memory per-worker metrics with per-key locking."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._counters: dict[str, _Counters] = {}

    def _entry(self, worker_id: str) -> _Counters:
        entry = self._counters.get(worker_id)
        if entry is None:
            with self._guard:
                entry = self._counters.setdefault(worker_id, _Counters())
        return entry

    def ensure(self, worker_id: str) -> None:
        """Create a zeroed entry for a worker if it has none."""
        self._entry(worker_id)

    def record(self, worker_id: str, success: bool, latency_ms: float) -> WorkerMetrics:
        """Record one finished task for a worker and return the updated snapshot."""
        if latency_ms < 0:
            raise ValueError(f"latency_ms must be >= 0, got {latency_ms}")

        entry = self._entry(worker_id)
        with entry.lock:
            entry.total_tasks += 1
            if success:
                entry.completed_tasks += 1
            else:
                entry.failed_tasks += 1
            entry.success_rate = entry.completed_tasks / entry.total_tasks
            entry.average_response_time_ms += (
                latency_ms - entry.average_response_time_ms
            ) / entry.total_tasks
            entry.last_updated = utc_now_iso()

        return entry.snapshot()

    def get(self, worker_id: str) -> WorkerMetrics:
        """Snapshot for one worker; zero values if nothing was recorded."""
        entry = self._counters.get(worker_id)
        if entry is None:
            return WorkerMetrics()
        return entry.snapshot()

    def get_all(self) -> dict[str, WorkerMetrics]:
        """Snapshot copy of every worker's metrics."""
        with self._guard:
            entries = list(self._counters.items())
        return {worker_id: entry.snapshot() for worker_id, entry in entries}

    def totals(self) -> tuple[int, int]:
        """(total_tasks, completed_tasks) summed across workers."""
        all_metrics = self.get_all().values()
        return (
            sum(m.total_tasks for m in all_metrics),
            sum(m.completed_tasks for m in all_metrics),
        )
