"""Pure functions that convert incident events into AlertMessage objects."""

from __future__ import annotations

from incident_engine.core.types import (
    IncidentEvent,
    IncidentEventType,
    IncidentStatus,
    Severity,
)
from incident_engine.monitor.types import AlertLevel, AlertMessage

# ── Level mappings ──────────────────────────────────────────────

_CREATED_LEVEL: dict[Severity, AlertLevel] = {
    Severity.CRITICAL: AlertLevel.CRITICAL,
    Severity.HIGH: AlertLevel.WARNING,
    Severity.MEDIUM: AlertLevel.WARNING,
    Severity.LOW: AlertLevel.INFO,
}

# Progress order of the lifecycle; moving backwards is a regression.
_STATUS_ORDER: dict[IncidentStatus, int] = {
    IncidentStatus.INVESTIGATING: 0,
    IncidentStatus.IDENTIFIED: 1,
    IncidentStatus.MONITORING: 2,
    IncidentStatus.RESOLVED: 3,
}


def is_regression(previous: IncidentStatus | None, new: IncidentStatus | None) -> bool:
    """True when an incident moved back, e.g. monitoring → identified."""
    if previous is None or new is None:
        return False
    return _STATUS_ORDER[new] < _STATUS_ORDER[previous]


def _base_fields(event: IncidentEvent) -> dict[str, str]:
    fields = {"incident_id": event.incident_id}
    if event.incident is not None:
        fields["severity"] = event.incident.severity.value
        fields["priority"] = event.incident.priority.value
        fields["status"] = event.incident.status.value
        fields["targets"] = ", ".join(event.incident.affected_targets)
        if event.incident.detection_rule_id:
            fields["rule_id"] = event.incident.detection_rule_id
    if event.actor_id:
        fields["actor_id"] = event.actor_id
    return fields


def _level(event: IncidentEvent) -> AlertLevel:
    match event.event_type:
        case IncidentEventType.INCIDENT_CREATED:
            severity = event.new_severity or (
                event.incident.severity if event.incident else Severity.LOW
            )
            return _CREATED_LEVEL[severity]
        case IncidentEventType.INCIDENT_STATUS_CHANGED:
            if is_regression(event.previous_status, event.new_status):
                return AlertLevel.WARNING
            return AlertLevel.INFO
        case IncidentEventType.INCIDENT_ESCALATED:
            if event.new_severity == Severity.CRITICAL:
                return AlertLevel.CRITICAL
            return AlertLevel.WARNING
    return AlertLevel.DEBUG


def _title(event: IncidentEvent) -> str:
    name = event.incident.title if event.incident else event.incident_id
    match event.event_type:
        case IncidentEventType.INCIDENT_CREATED:
            return f"New incident: {name}"
        case IncidentEventType.INCIDENT_STATUS_CHANGED:
            return f"Incident {event.new_status}: {name}"
        case IncidentEventType.INCIDENT_ESCALATED:
            return f"Incident escalated to {event.new_severity}: {name}"
    return name


# ── Formatter ───────────────────────────────────────────────────


def format_incident_event(event: IncidentEvent) -> AlertMessage:
    """Convert an IncidentEvent to an AlertMessage."""
    fields = _base_fields(event)
    if event.previous_status is not None:
        fields["previous_status"] = event.previous_status.value

    body = event.reason
    if not body and event.event_type == IncidentEventType.INCIDENT_CREATED and event.incident:
        body = event.incident.description

    target_id = ""
    if event.incident is not None and event.incident.affected_targets:
        target_id = event.incident.affected_targets[0]

    msg = AlertMessage(
        level=_level(event),
        title=_title(event),
        body=body,
        fields=fields,
        source_event_type=event.event_type.value,
        target_id=target_id,
        raw=event.model_dump(mode="json"),
    )
    if event.timestamp:
        msg.timestamp = event.timestamp
    return msg
