"""CLI entry point for Conductor."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from conductor import __version__
from conductor.engine.models import Priority, TaskKind

if TYPE_CHECKING:
    from conductor.engine.models import TaskResult
    from conductor.engine.orchestrator import TaskOrchestrator

console = Console()


def configure_logging(level: str = "INFO") -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _get_orchestrator() -> TaskOrchestrator:
    from conductor.config import Settings
    from conductor.engine.catalog import register_defaults
    from conductor.engine.orchestrator import TaskOrchestrator

    orchestrator = TaskOrchestrator(settings=Settings.from_env())
    register_defaults(orchestrator)
    return orchestrator


@click.group()
@click.version_option(version=__version__, prog_name="conductor")
@click.option("--log-level", default="WARNING", help="Logging level")
def main(log_level: str) -> None:
    """Conductor: capability-matched task orchestration."""
    configure_logging(log_level)


@main.command()
def workers() -> None:
    """List the default worker catalog."""
    from conductor.engine.catalog import DEFAULT_CAPABILITIES

    table = Table(title="Workers")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Expertise", max_width=36)
    table.add_column("Confidence", style="green")

    for descriptor in DEFAULT_CAPABILITIES:
        table.add_row(
            descriptor.id,
            descriptor.name,
            ", ".join(sorted(descriptor.expertise_tags)),
            f"{descriptor.base_confidence:.2f}",
        )

    console.print(table)


@main.command()
@click.argument("tags", nargs=-1, required=True)
def match(tags: tuple[str, ...]) -> None:
    """Show which workers match TAGS and how they score."""
    orchestrator = _get_orchestrator()
    candidates = orchestrator.registry.find_by_tags(tags)

    if not candidates:
        console.print(f"[yellow]No worker matches: {', '.join(tags)}[/yellow]")
        return

    table = Table(title="Candidates")
    table.add_column("Worker", style="cyan", no_wrap=True)
    table.add_column("Overlap")
    table.add_column("Score", style="bold")

    for candidate in candidates:
        table.add_row(
            candidate.name,
            f"{candidate.overlap}/{len(set(tags))}",
            f"{candidate.score:.3f}",
        )

    console.print(table)


@main.command()
@click.argument("kind", type=click.Choice([k.value for k in TaskKind]))
@click.argument("text")
@click.option("--tag", "-t", "tags", multiple=True, required=True, help="Required tag")
@click.option(
    "--priority",
    default="medium",
    type=click.Choice([p.value for p in Priority]),
    help="Task priority",
)
def run(kind: str, text: str, tags: tuple[str, ...], priority: str) -> None:
    """Submit TEXT as a KIND task to the local demo workers."""
    from conductor.engine.models import TaskRequest
    from conductor.errors import OrchestrationError

    orchestrator = _get_orchestrator()
    request = TaskRequest(
        kind=kind, input=text, required_tags=frozenset(tags), priority=priority
    )

    try:
        result = asyncio.run(orchestrator.submit(request))
    except OrchestrationError as exc:
        console.print(f"[red]{exc.kind.value}:[/red] {exc.user_message}")
        console.print(f"[dim]{exc}[/dim]")
        if exc.result is not None:
            _print_trace(exc.result)
        raise SystemExit(1) from exc

    _print_trace(result)
    console.print(f"\n[green]Output:[/green] {result.output}")


@main.command()
def health() -> None:
    """Show worker circuit states."""
    report = _get_orchestrator().health()
    color = {"healthy": "green", "degraded": "yellow"}.get(report.status, "red")
    console.print(f"[{color}]Status: {report.status}[/{color}]")
    for worker_id, state in report.workers.items():
        console.print(f"  {worker_id}: {state}")


def _print_trace(result: TaskResult) -> None:
    """Print the selection trace of a task."""
    table = Table(title=f"Task {result.task_id}")
    table.add_column("#")
    table.add_column("Action", style="cyan")
    table.add_column("Reasoning", max_width=60)
    table.add_column("Result")
    table.add_column("Confidence")

    for step in result.trace:
        table.add_row(
            str(step.step),
            step.action,
            step.reasoning,
            step.result or "",
            f"{step.confidence:.2f}",
        )

    console.print(table)
    state_color = "green" if result.succeeded else "red"
    console.print(f"[{state_color}]State: {result.state.value}[/{state_color}]")
    console.print(f"Worker: {result.assigned_worker or '-'}")
    console.print(f"Confidence: {result.confidence:.2f}")
    if result.final_reasoning:
        console.print(f"Reasoning: {result.final_reasoning}")
