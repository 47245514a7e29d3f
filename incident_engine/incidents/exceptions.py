"""Incident lifecycle exceptions."""

from __future__ import annotations

from incident_engine.core.types import IncidentStatus


class IncidentError(Exception):
    """Base exception for incident lifecycle errors."""


class IncidentNotFoundError(IncidentError):
    """No incident exists with the requested id."""

    def __init__(self, incident_id: str) -> None:
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class InvalidTransitionError(IncidentError):
    """The requested status change is not an edge of the state machine."""

    def __init__(self, current: IncidentStatus, requested: IncidentStatus) -> None:
        super().__init__(f"Invalid status transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class StaleIncidentError(IncidentError):
    """A compare-and-set lost to a concurrent writer."""

    def __init__(self, incident_id: str, expected: IncidentStatus, actual: IncidentStatus) -> None:
        super().__init__(
            f"Incident {incident_id} is {actual}, expected {expected}",
        )
        self.incident_id = incident_id
        self.expected = expected
        self.actual = actual


class PersistenceError(IncidentError):
    """The incident store failed to create or update a record."""

    def __init__(
        self,
        message: str,
        *,
        incident_id: str | None = None,
        target_id: str | None = None,
        failures: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.incident_id = incident_id
        self.target_id = target_id
        # rule_id -> error text, when raised for a whole analysis
        self.failures = failures or {}
