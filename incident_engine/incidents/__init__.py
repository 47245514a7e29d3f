"""Incident lifecycle: state machine, persistence interface, manager."""

from incident_engine.incidents.exceptions import (
    IncidentError,
    IncidentNotFoundError,
    InvalidTransitionError,
    PersistenceError,
    StaleIncidentError,
)
from incident_engine.incidents.lifecycle import (
    IncidentEventCallback,
    IncidentLifecycleManager,
    generate_incident_id,
)
from incident_engine.incidents.state_machine import (
    VALID_TRANSITIONS,
    is_valid_transition,
    validate_transition,
)
from incident_engine.incidents.store import InMemoryIncidentStore, IncidentStore

__all__ = [
    "InMemoryIncidentStore",
    "IncidentError",
    "IncidentEventCallback",
    "IncidentLifecycleManager",
    "IncidentNotFoundError",
    "IncidentStore",
    "InvalidTransitionError",
    "PersistenceError",
    "StaleIncidentError",
    "VALID_TRANSITIONS",
    "generate_incident_id",
    "is_valid_transition",
    "validate_transition",
]
