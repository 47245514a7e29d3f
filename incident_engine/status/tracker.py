"""SystemStatusTracker: derives public service health from open incidents."""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from incident_engine.core.types import (
    Incident,
    ServiceHealth,
    Severity,
    SystemStatusSnapshot,
)
from incident_engine.incidents.store import IncidentStore

logger = structlog.stdlib.get_logger()

_HEALTH_RANK: dict[ServiceHealth, int] = {
    ServiceHealth.OPERATIONAL: 0,
    ServiceHealth.DEGRADED: 1,
    ServiceHealth.MAJOR_OUTAGE: 2,
}


def health_for_severity(severity: Severity) -> ServiceHealth:
    if severity in (Severity.CRITICAL, Severity.HIGH):
        return ServiceHealth.MAJOR_OUTAGE
    return ServiceHealth.DEGRADED


def worst(a: ServiceHealth, b: ServiceHealth) -> ServiceHealth:
    return a if _HEALTH_RANK[a] >= _HEALTH_RANK[b] else b


def compute_snapshot(open_incidents: list[Incident], now: float) -> SystemStatusSnapshot:
    """Fold open incidents into per-target and overall health."""
    targets: dict[str, ServiceHealth] = {}
    for incident in open_incidents:
        health = health_for_severity(incident.severity)
        for target_id in incident.affected_targets:
            targets[target_id] = worst(
                targets.get(target_id, ServiceHealth.OPERATIONAL), health,
            )

    overall = ServiceHealth.OPERATIONAL
    for health in targets.values():
        overall = worst(overall, health)

    return SystemStatusSnapshot(
        overall=overall,
        targets=targets,
        open_incidents=len(open_incidents),
        computed_at=now,
    )


class SystemStatusTracker:
    """Recomputes system status after every incident mutation.

    Only changes of the overall status are appended to the history, so the
    history reads as a timeline of transitions.
    """

    def __init__(
        self,
        store: IncidentStore,
        clock: Callable[[], float] = time.time,
        max_history: int = 100,
    ) -> None:
        self._store = store
        self._clock = clock
        self._max_history = max_history
        self._current = SystemStatusSnapshot(computed_at=clock())
        self._history: list[SystemStatusSnapshot] = []

    # ── Properties ────────────────────────────────────────────────

    @property
    def current(self) -> SystemStatusSnapshot:
        """Most recently computed snapshot."""
        return self._current.model_copy(deep=True)

    @property
    def history(self) -> list[SystemStatusSnapshot]:
        """Overall-status changes, newest first."""
        return [s.model_copy(deep=True) for s in reversed(self._history)]

    # ── Recompute ─────────────────────────────────────────────────

    async def recompute(self) -> SystemStatusSnapshot:
        """Rebuild the snapshot from the store's open incidents."""
        open_incidents = await self._store.find_open_incidents()
        snapshot = compute_snapshot(open_incidents, self._clock())

        previous = self._history[-1].overall if self._history else None
        if snapshot.overall != previous:
            self._history.append(snapshot)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]
            logger.info(
                "system_status_changed",
                previous=previous,
                overall=snapshot.overall,
                open_incidents=snapshot.open_incidents,
            )

        self._current = snapshot
        return snapshot.model_copy(deep=True)
