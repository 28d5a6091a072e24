"""Runtime configuration for the orchestrator and its resilience guards."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# Per-kind worker timeouts (ms); transcription gets the longest budget.
DEFAULT_KIND_TIMEOUTS_MS: dict[str, int] = {
    "voice_processing": 120_000,
    "entity_extraction": 45_000,
    "response_generation": 45_000,
    "tts": 45_000,
    "analysis": 45_000,
}


@dataclass(slots=True)
class ResilienceSettings:
    """Circuit breaker and timeout settings applied to every worker."""

    failure_threshold: int = 3
    reset_timeout_ms: int = 30_000
    task_timeout_ms: int = 45_000
    kind_timeouts_ms: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_KIND_TIMEOUTS_MS)
    )

    def timeout_for(self, kind: str) -> int:
        return self.kind_timeouts_ms.get(kind, self.task_timeout_ms)


@dataclass(slots=True)
class OracleSettings:
    """Reasoning oracle settings."""

    timeout_ms: int = 15_000
    attempts: int = 2
    retry_delay_ms: int = 250


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)
    oracle: OracleSettings = field(default_factory=OracleSettings)
    submit_ceiling_ms: int = 180_000
    history_size: int = 500
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``CONDUCTOR_*`` environment variables."""

        task_timeout_ms = _env_int("CONDUCTOR_TASK_TIMEOUT_MS", 45_000)
        kind_timeouts = dict(DEFAULT_KIND_TIMEOUTS_MS)
        for kind in kind_timeouts:
            override = os.getenv(f"CONDUCTOR_TIMEOUT_{kind.upper()}_MS")
            if override:
                kind_timeouts[kind] = int(override)

        return cls(
            resilience=ResilienceSettings(
                failure_threshold=_env_int("CONDUCTOR_FAILURE_THRESHOLD", 3),
                reset_timeout_ms=_env_int("CONDUCTOR_RESET_TIMEOUT_MS", 30_000),
                task_timeout_ms=task_timeout_ms,
                kind_timeouts_ms=kind_timeouts,
            ),
            oracle=OracleSettings(
                timeout_ms=_env_int("CONDUCTOR_ORACLE_TIMEOUT_MS", 15_000),
                attempts=_env_int("CONDUCTOR_ORACLE_ATTEMPTS", 2),
                retry_delay_ms=_env_int("CONDUCTOR_ORACLE_RETRY_DELAY_MS", 250),
            ),
            submit_ceiling_ms=_env_int("CONDUCTOR_SUBMIT_CEILING_MS", 180_000),
            history_size=_env_int("CONDUCTOR_HISTORY_SIZE", 500),
            log_level=os.getenv("CONDUCTOR_LOG_LEVEL", "INFO").upper(),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
