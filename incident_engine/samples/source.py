"""Health sample sources: where the engine reads a target's recent history."""

from __future__ import annotations

import abc
import bisect
from collections import defaultdict

from incident_engine.core.types import HealthSample


def _timestamp(sample: HealthSample) -> float:
    return sample.timestamp


class SampleSource(abc.ABC):
    """Read access to recorded health samples, per target.

    Implemented by the probe/persistence side. The engine only reads.
    """

    @abc.abstractmethod
    async def has_target(self, target_id: str) -> bool:
        """Whether the target is known to the source."""

    @abc.abstractmethod
    async def latest(self, target_id: str) -> HealthSample | None:
        """Most recent sample for a target, or None if it has none."""

    @abc.abstractmethod
    async def recent(self, target_id: str, limit: int) -> list[HealthSample]:
        """Up to *limit* most recent samples, oldest first."""

    @abc.abstractmethod
    async def since(self, target_id: str, start: float) -> list[HealthSample]:
        """All samples with ``timestamp >= start``, oldest first."""


class InMemorySampleSource(SampleSource):
    """Sample source backed by per-target lists kept sorted by timestamp.

    Useful for single-process deployments, the replay script, and tests.
    """

    def __init__(self) -> None:
        self._samples: dict[str, list[HealthSample]] = defaultdict(list)
        self._targets: set[str] = set()

    def register_target(self, target_id: str) -> None:
        """Make a target known before it has produced any samples."""
        self._targets.add(target_id)

    def remove_target(self, target_id: str) -> None:
        """Forget a target and its history."""
        self._targets.discard(target_id)
        self._samples.pop(target_id, None)

    def record(self, sample: HealthSample) -> None:
        """Store a sample, keeping the target's history ordered."""
        self._targets.add(sample.target_id)
        bisect.insort(self._samples[sample.target_id], sample, key=_timestamp)

    def record_many(self, samples: list[HealthSample]) -> None:
        for sample in samples:
            self.record(sample)

    @property
    def targets(self) -> list[str]:
        return sorted(self._targets)

    async def has_target(self, target_id: str) -> bool:
        return target_id in self._targets

    async def latest(self, target_id: str) -> HealthSample | None:
        history = self._samples.get(target_id)
        return history[-1] if history else None

    async def recent(self, target_id: str, limit: int) -> list[HealthSample]:
        if limit <= 0:
            return []
        return list(self._samples.get(target_id, [])[-limit:])

    async def since(self, target_id: str, start: float) -> list[HealthSample]:
        history = self._samples.get(target_id, [])
        return history[bisect.bisect_left(history, start, key=_timestamp):]
