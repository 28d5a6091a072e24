"""Default worker catalog and a local demo adapter."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from conductor.engine.models import CapabilityDescriptor

if TYPE_CHECKING:
    from conductor.engine.orchestrator import TaskOrchestrator, WorkerAdapter

DEFAULT_CAPABILITIES: tuple[CapabilityDescriptor, ...] = (
    CapabilityDescriptor(
        id="voice-processor",
        name="Voice Processor",
        description="Specialized in voice transcription and audio processing",
        expertise_tags=frozenset({"transcription", "audio-processing", "speech-to-text"}),
        base_confidence=0.9,
    ),
    CapabilityDescriptor(
        id="entity-extractor",
        name="Entity Extractor",
        description="Specialized in extracting entities from text",
        expertise_tags=frozenset({"entity-extraction", "nlp", "text-analysis"}),
        base_confidence=0.85,
    ),
    CapabilityDescriptor(
        id="response-generator",
        name="Response Generator",
        description="Specialized in generating conversational responses",
        expertise_tags=frozenset({"conversation", "response-generation", "dialogue"}),
        base_confidence=0.8,
    ),
    CapabilityDescriptor(
        id="tts-synthesizer",
        name="TTS Synthesizer",
        description="Specialized in text-to-speech synthesis",
        expertise_tags=frozenset({"tts", "voice-synthesis", "audio-generation"}),
        base_confidence=0.88,
    ),
    CapabilityDescriptor(
        id="data-analyst",
        name="Data Analyst",
        description="Specialized in data analysis and insights",
        expertise_tags=frozenset({"analytics", "data-processing", "insights"}),
        base_confidence=0.82,
    ),
)


def echo_adapter(descriptor: CapabilityDescriptor) -> WorkerAdapter:
    """Deterministic local adapter: reports what it would have processed."""

    async def call(payload: Any) -> dict[str, Any]:
        size = len(payload) if isinstance(payload, (str, bytes, bytearray)) else None
        text = payload.strip() if isinstance(payload, str) else f"<{type(payload).__name__}>"
        return {"worker": descriptor.id, "text": text, "input_size": size}

    return call


def register_defaults(
    orchestrator: TaskOrchestrator,
    adapter_factory: Callable[[CapabilityDescriptor], WorkerAdapter] = echo_adapter,
) -> list[str]:
    """Register the default catalog; returns the registered worker ids."""
    for descriptor in DEFAULT_CAPABILITIES:
        orchestrator.register_worker(descriptor, adapter_factory(descriptor))
    return [d.id for d in DEFAULT_CAPABILITIES]
