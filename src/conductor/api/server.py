"""FastAPI server exposing the orchestrator to HTTP callers."""

from __future__ import annotations

import logging
from typing import Any

import click
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from conductor import __version__
from conductor.config import Settings
from conductor.engine.catalog import register_defaults
from conductor.engine.models import Priority, TaskKind, TaskRequest
from conductor.engine.orchestrator import TaskOrchestrator
from conductor.errors import OrchestrationError

logger = logging.getLogger(__name__)


class TaskPayload(BaseModel):
    """Inbound task submission."""

    kind: TaskKind
    input: str
    required_tags: list[str] = Field(min_length=1)
    priority: Priority = Priority.MEDIUM
    metadata: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: float | None = Field(default=None, gt=0)


def create_app(orchestrator: TaskOrchestrator) -> FastAPI:
    """Build an app bound to ``orchestrator``."""
    app = FastAPI(
        title="Conductor API",
        version=__version__,
        description="Capability-matched task orchestration",
    )

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check derived from worker circuit states."""
        return orchestrator.health().to_dict()

    @app.get("/api/workers")
    async def workers() -> dict[str, Any]:
        """Registered workers with metrics and circuit state."""
        described = orchestrator.describe_workers()
        return {"workers": described, "count": len(described)}

    @app.get("/api/metrics")
    async def metrics() -> dict[str, Any]:
        """Per-worker metrics plus system status."""
        return {
            "workers": {k: v.to_dict() for k, v in orchestrator.metrics.get_all().items()},
            "system": orchestrator.system_status(),
        }

    @app.get("/api/tasks")
    async def tasks(limit: int = 20) -> dict[str, Any]:
        """Most recent task snapshots."""
        recent = [t.to_dict() for t in orchestrator.recent_tasks(limit)]
        return {"tasks": recent, "count": len(recent), "limit": limit}

    @app.get("/api/tasks/{task_id}")
    async def task(task_id: str) -> JSONResponse:
        snapshot = orchestrator.get_task(task_id)
        if snapshot is None:
            return JSONResponse(
                status_code=404,
                content={"success": False, "error": "not_found", "message": "Unknown task id"},
            )
        return JSONResponse(content=snapshot.to_dict())

    @app.post("/api/tasks")
    async def submit(payload: TaskPayload) -> JSONResponse:
        """Translate the payload into a task and run it to completion."""
        request = TaskRequest(
            kind=payload.kind,
            input=payload.input,
            required_tags=frozenset(payload.required_tags),
            priority=payload.priority,
            metadata=payload.metadata,
        )
        try:
            result = await orchestrator.submit(request, timeout=payload.timeout_seconds)
        except OrchestrationError as exc:
            logger.info(
                "POST /api/tasks %s -> %d %s", request.id, exc.status_code, exc.kind.value
            )
            body = exc.to_dict()
            if exc.result is not None:
                body["task"] = exc.result.to_dict()
            return JSONResponse(status_code=exc.status_code, content=body)
        return JSONResponse(content={"success": True, "task": result.to_dict()})

    return app


def build_default_app() -> FastAPI:
    """App with the default catalog wired to local echo adapters."""
    orchestrator = TaskOrchestrator(settings=Settings.from_env())
    register_defaults(orchestrator)
    return create_app(orchestrator)


app = build_default_app()


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def main(port: int, host: str) -> None:
    """Start the Conductor API server."""
    import uvicorn

    from conductor.cli import configure_logging

    configure_logging(Settings.from_env().log_level)
    uvicorn.run(app, host=host, port=port)
