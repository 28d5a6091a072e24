"""Tests for capability matching and the worker registry."""

from __future__ import annotations

import pytest

from conductor.engine import CapabilityDescriptor, CapabilityRegistry, calculate_tag_overlap
from conductor.errors import DuplicateRegistrationError, WorkerNotFoundError


def make_descriptor(
    worker_id: str, tags: set[str], confidence: float = 0.8, name: str | None = None
) -> CapabilityDescriptor:
    return CapabilityDescriptor(
        id=worker_id,
        name=name or worker_id.upper(),
        description=f"{worker_id} worker",
        expertise_tags=frozenset(tags),
        base_confidence=confidence,
    )


class TestTagOverlap:
    """Tests for calculate_tag_overlap."""

    def test_full_overlap(self) -> None:
        descriptor = make_descriptor("w1", {"nlp", "ner"}, 0.9)
        overlap, score = calculate_tag_overlap(descriptor, frozenset({"nlp", "ner"}))
        assert overlap == 2
        assert score == pytest.approx(0.9)

    def test_partial_overlap(self) -> None:
        descriptor = make_descriptor("w1", {"nlp"}, 0.8)
        overlap, score = calculate_tag_overlap(descriptor, frozenset({"nlp", "ner", "tts", "x"}))
        assert overlap == 1
        assert score == pytest.approx(0.2)

    def test_no_overlap(self) -> None:
        descriptor = make_descriptor("w1", {"nlp"})
        assert calculate_tag_overlap(descriptor, frozenset({"tts"})) == (0, 0.0)

    def test_empty_required_tags(self) -> None:
        assert calculate_tag_overlap(make_descriptor("w1", {"nlp"}), frozenset()) == (0, 0.0)


class TestCapabilityDescriptor:
    """Tests for CapabilityDescriptor validation."""

    def test_confidence_must_be_unit_interval(self) -> None:
        with pytest.raises(ValueError):
            make_descriptor("w1", {"nlp"}, 1.5)
        with pytest.raises(ValueError):
            make_descriptor("w1", {"nlp"}, -0.1)

    def test_empty_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            make_descriptor(" ", {"nlp"})

    def test_tags_are_normalized(self) -> None:
        descriptor = make_descriptor("w1", {" nlp ", "", "ner"})
        assert descriptor.expertise_tags == frozenset({"nlp", "ner"})


class TestCapabilityRegistry:
    """Tests for CapabilityRegistry."""

    def test_register_and_get(self) -> None:
        registry = CapabilityRegistry()
        descriptor = make_descriptor("w1", {"nlp"})

        assert registry.register(descriptor) is True
        assert registry.get("w1") is descriptor
        assert "w1" in registry
        assert len(registry) == 1

    def test_get_unknown_raises(self) -> None:
        with pytest.raises(WorkerNotFoundError):
            CapabilityRegistry().get("ghost")

    def test_identical_reregistration_is_noop(self) -> None:
        registry = CapabilityRegistry()
        registry.register(make_descriptor("w1", {"nlp"}))

        assert registry.register(make_descriptor("w1", {"nlp"})) is False
        assert len(registry) == 1

    def test_conflicting_reregistration_raises(self) -> None:
        registry = CapabilityRegistry()
        registry.register(make_descriptor("w1", {"nlp"}))

        with pytest.raises(DuplicateRegistrationError):
            registry.register(make_descriptor("w1", {"tts"}))
        assert registry.get("w1").expertise_tags == frozenset({"nlp"})

    def test_replace_overwrites(self) -> None:
        registry = CapabilityRegistry()
        registry.register(make_descriptor("w1", {"nlp"}))

        assert registry.register(make_descriptor("w1", {"tts"}), replace=True) is True
        assert registry.get("w1").expertise_tags == frozenset({"tts"})

    def test_find_by_tags_sorted_by_score(self) -> None:
        registry = CapabilityRegistry()
        registry.register(make_descriptor("low", {"nlp"}, 0.5))
        registry.register(make_descriptor("high", {"nlp"}, 0.9))
        registry.register(make_descriptor("both", {"nlp", "ner"}, 0.6))
        registry.register(make_descriptor("none", {"tts"}, 1.0))

        candidates = registry.find_by_tags({"nlp", "ner"})

        assert [c.worker_id for c in candidates] == ["both", "high", "low"]
        assert candidates[0].overlap == 2
        assert candidates[0].score == pytest.approx(0.6)
        assert candidates[1].score == pytest.approx(0.45)

    def test_find_by_tags_ties_keep_registration_order(self) -> None:
        registry = CapabilityRegistry()
        for worker_id in ("a", "b", "c"):
            registry.register(make_descriptor(worker_id, {"nlp"}, 0.7))

        assert [c.worker_id for c in registry.find_by_tags({"nlp"})] == ["a", "b", "c"]

    def test_find_by_tags_no_match(self) -> None:
        registry = CapabilityRegistry()
        registry.register(make_descriptor("w1", {"nlp"}))
        assert registry.find_by_tags({"unknown-capability"}) == []
