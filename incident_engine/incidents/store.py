"""Incident persistence interface and an in-memory implementation."""

from __future__ import annotations

import abc
from collections import defaultdict

from incident_engine.core.types import (
    Incident,
    IncidentStatus,
    IncidentUpdate,
    Priority,
    Severity,
)
from incident_engine.incidents.exceptions import IncidentNotFoundError, StaleIncidentError


class IncidentStore(abc.ABC):
    """Narrow persistence interface the lifecycle manager depends on.

    Implementations may fail or be slow; callers treat any exception as a
    persistence failure for that one operation.
    """

    @abc.abstractmethod
    async def create(self, incident: Incident) -> Incident:
        """Persist a new incident and return the stored copy."""

    @abc.abstractmethod
    async def get(self, incident_id: str) -> Incident | None:
        """Return the incident, or None if unknown."""

    @abc.abstractmethod
    async def append_update(self, incident_id: str, update: IncidentUpdate) -> IncidentUpdate:
        """Append an audit entry to an incident's trail."""

    @abc.abstractmethod
    async def get_current_status(self, incident_id: str) -> IncidentStatus:
        """Current status; raises IncidentNotFoundError if unknown."""

    @abc.abstractmethod
    async def find_open_incidents_for_target(self, target_id: str) -> list[Incident]:
        """Unresolved incidents whose affected targets include *target_id*."""

    @abc.abstractmethod
    async def find_open_incidents(self) -> list[Incident]:
        """All unresolved incidents."""

    @abc.abstractmethod
    async def compare_and_set_status(
        self,
        incident_id: str,
        expected: IncidentStatus,
        new_status: IncidentStatus,
        resolved_at: float | None = None,
    ) -> Incident:
        """Set the status iff it is still *expected*; raise StaleIncidentError otherwise."""

    @abc.abstractmethod
    async def revert_status(
        self,
        incident_id: str,
        applied: IncidentStatus,
        previous: IncidentStatus,
    ) -> Incident:
        """Undo a status change whose update could not be written.

        Sets *previous* iff the status is still *applied*, raising
        StaleIncidentError otherwise, and clears ``resolved_at`` when
        *previous* is an open status.
        """

    @abc.abstractmethod
    async def delete(self, incident_id: str) -> None:
        """Remove an incident and its trail. Undoes a create whose first update failed."""

    @abc.abstractmethod
    async def update_severity(
        self, incident_id: str, severity: Severity, priority: Priority,
    ) -> Incident:
        """Overwrite severity and priority."""

    @abc.abstractmethod
    async def list_updates(self, incident_id: str) -> list[IncidentUpdate]:
        """Audit trail, oldest first."""


class InMemoryIncidentStore(IncidentStore):
    """Dict-backed store for single-process use and tests."""

    def __init__(self) -> None:
        self._incidents: dict[str, Incident] = {}
        self._updates: dict[str, list[IncidentUpdate]] = defaultdict(list)

    def _require(self, incident_id: str) -> Incident:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    @property
    def incidents(self) -> list[Incident]:
        """Snapshot of every stored incident, oldest first."""
        return [i.model_copy(deep=True) for i in self._incidents.values()]

    async def create(self, incident: Incident) -> Incident:
        if incident.id in self._incidents:
            raise ValueError(f"Incident id already exists: {incident.id}")
        self._incidents[incident.id] = incident.model_copy(deep=True)
        return incident.model_copy(deep=True)

    async def get(self, incident_id: str) -> Incident | None:
        incident = self._incidents.get(incident_id)
        return incident.model_copy(deep=True) if incident else None

    async def append_update(self, incident_id: str, update: IncidentUpdate) -> IncidentUpdate:
        self._require(incident_id)
        stored = update.model_copy(update={"incident_id": incident_id})
        self._updates[incident_id].append(stored)
        return stored.model_copy()

    async def get_current_status(self, incident_id: str) -> IncidentStatus:
        return self._require(incident_id).status

    async def find_open_incidents_for_target(self, target_id: str) -> list[Incident]:
        return [
            i.model_copy(deep=True) for i in self._incidents.values()
            if i.is_open and target_id in i.affected_targets
        ]

    async def find_open_incidents(self) -> list[Incident]:
        return [i.model_copy(deep=True) for i in self._incidents.values() if i.is_open]

    async def compare_and_set_status(
        self,
        incident_id: str,
        expected: IncidentStatus,
        new_status: IncidentStatus,
        resolved_at: float | None = None,
    ) -> Incident:
        incident = self._require(incident_id)
        if incident.status != expected:
            raise StaleIncidentError(incident_id, expected, incident.status)
        incident.status = new_status
        # resolved_at is written once and never cleared
        if resolved_at is not None and incident.resolved_at is None:
            incident.resolved_at = resolved_at
        return incident.model_copy(deep=True)

    async def revert_status(
        self,
        incident_id: str,
        applied: IncidentStatus,
        previous: IncidentStatus,
    ) -> Incident:
        incident = self._require(incident_id)
        if incident.status != applied:
            raise StaleIncidentError(incident_id, applied, incident.status)
        incident.status = previous
        if previous != IncidentStatus.RESOLVED:
            incident.resolved_at = None
        return incident.model_copy(deep=True)

    async def delete(self, incident_id: str) -> None:
        self._incidents.pop(incident_id, None)
        self._updates.pop(incident_id, None)

    async def update_severity(
        self, incident_id: str, severity: Severity, priority: Priority,
    ) -> Incident:
        incident = self._require(incident_id)
        incident.severity = severity
        incident.priority = priority
        return incident.model_copy(deep=True)

    async def list_updates(self, incident_id: str) -> list[IncidentUpdate]:
        self._require(incident_id)
        return [u.model_copy() for u in self._updates[incident_id]]
