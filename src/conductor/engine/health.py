"""Health summary derived from per-worker circuit states."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from conductor import __version__
from conductor.engine.models import utc_now_iso
from conductor.resilience import CircuitState


@dataclass(frozen=True)
class HealthReport:
    """Overall status plus the circuit state of every worker."""

    status: str  # healthy, degraded, unhealthy
    workers: dict[str, str]
    uptime_seconds: float
    version: str = __version__
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "workers": dict(self.workers),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "version": self.version,
            "timestamp": self.timestamp,
        }


def build_health(circuits: Mapping[str, CircuitState], uptime_seconds: float) -> HealthReport:
    """
    healthy: every circuit closed
    degraded: at least one circuit open or probing, at least one usable
    unhealthy: no workers, or every circuit open
    """
    states = list(circuits.values())
    if not states or all(s is CircuitState.OPEN for s in states):
        status = "unhealthy"
    elif all(s is CircuitState.CLOSED for s in states):
        status = "healthy"
    else:
        status = "degraded"

    return HealthReport(
        status=status,
        workers={worker_id: state.value for worker_id, state in circuits.items()},
        uptime_seconds=uptime_seconds,
    )
