"""Capability Registry - Declared worker capabilities and tag-overlap matching."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from conductor.engine.models import Candidate, CapabilityDescriptor
from conductor.errors import DuplicateRegistrationError, WorkerNotFoundError

logger = logging.getLogger(__name__)


def calculate_tag_overlap(
    descriptor: CapabilityDescriptor, required_tags: frozenset[str]
) -> tuple[int, float]:
    """
    Score how well a capability covers the required tags.

    Returns:
        (overlap, score) where overlap = |expertise ∩ required| and
        score = base_confidence * overlap / |required|
    """
    if not required_tags:
        return 0, 0.0
    overlap = len(descriptor.expertise_tags & required_tags)
    return overlap, descriptor.base_confidence * (overlap / len(required_tags))


class CapabilityRegistry:
    """
    Maps worker ids to their declared capabilities.

    Writes swap in a fresh read-only mapping under a lock, so readers always
    see a complete snapshot even when a late registration races with them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._descriptors: Mapping[str, CapabilityDescriptor] = MappingProxyType({})

    def register(self, descriptor: CapabilityDescriptor, *, replace: bool = False) -> bool:
        """
        Register or update a capability.

        Re-registering an identical descriptor is a no-op. A conflicting
        descriptor for a known id requires ``replace=True``.

        Returns:
            True if the registry contents changed
        """
        with self._lock:
            existing = self._descriptors.get(descriptor.id)
            if existing == descriptor:
                return False
            if existing is not None and not replace:
                raise DuplicateRegistrationError(
                    f"Worker '{descriptor.id}' is already registered with a different capability"
                )
            updated = dict(self._descriptors)
            updated[descriptor.id] = descriptor
            self._descriptors = MappingProxyType(updated)

        action = "Replaced" if existing is not None else "Registered"
        logger.info("%s worker: %s - %s", action, descriptor.id, descriptor.name)
        return True

    def get(self, worker_id: str) -> CapabilityDescriptor:
        """Get a capability by worker id."""
        descriptor = self._descriptors.get(worker_id)
        if descriptor is None:
            raise WorkerNotFoundError(f"Worker '{worker_id}' is not registered")
        return descriptor

    def find_by_tags(self, required_tags: Iterable[str]) -> list[Candidate]:
        """
        Find workers whose expertise overlaps the required tags.

        Returns:
            Candidates sorted by score, highest first; ties keep registration order
        """
        required = frozenset(required_tags)
        snapshot = self._descriptors

        candidates: list[Candidate] = []
        for worker_id, descriptor in snapshot.items():
            overlap, score = calculate_tag_overlap(descriptor, required)
            if overlap == 0:
                continue
            candidates.append(
                Candidate(worker_id=worker_id, descriptor=descriptor, score=score, overlap=overlap)
            )

        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates

    def descriptors(self) -> list[CapabilityDescriptor]:
        return list(self._descriptors.values())

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
