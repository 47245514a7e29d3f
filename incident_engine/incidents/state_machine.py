"""Incident status state machine: the single source of valid transitions."""

from __future__ import annotations

from incident_engine.core.types import IncidentStatus
from incident_engine.incidents.exceptions import InvalidTransitionError

INITIAL_STATUS = IncidentStatus.INVESTIGATING

# {current: allowed next statuses}; RESOLVED is terminal.
VALID_TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    IncidentStatus.INVESTIGATING: frozenset({
        IncidentStatus.IDENTIFIED,
        IncidentStatus.RESOLVED,
    }),
    IncidentStatus.IDENTIFIED: frozenset({
        IncidentStatus.MONITORING,
        IncidentStatus.RESOLVED,
    }),
    IncidentStatus.MONITORING: frozenset({
        IncidentStatus.RESOLVED,
        IncidentStatus.IDENTIFIED,  # issue reoccurred after mitigation
    }),
    IncidentStatus.RESOLVED: frozenset(),
}

DEFAULT_STATUS_MESSAGES: dict[IncidentStatus, str] = {
    IncidentStatus.INVESTIGATING: "Status changed to Investigating",
    IncidentStatus.IDENTIFIED: "Issue has been identified",
    IncidentStatus.MONITORING: "Fix implemented, monitoring for stability",
    IncidentStatus.RESOLVED: "Incident has been resolved",
}


def is_valid_transition(current: IncidentStatus, new: IncidentStatus) -> bool:
    return new in VALID_TRANSITIONS.get(current, frozenset())


def validate_transition(current: IncidentStatus, new: IncidentStatus) -> None:
    """Raise InvalidTransitionError unless ``current → new`` is an edge."""
    if not is_valid_transition(current, new):
        raise InvalidTransitionError(current, new)


def is_terminal(status: IncidentStatus) -> bool:
    return not VALID_TRANSITIONS.get(status)


def default_message(status: IncidentStatus) -> str:
    return DEFAULT_STATUS_MESSAGES.get(status, f"Status changed to {status}")
