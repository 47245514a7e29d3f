"""Domain types for health samples, detection and the incident lifecycle.

Timestamps are POSIX seconds (``time.time()``) throughout.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# ── Health Types ───────────────────────────────────────────────


class HealthSample(BaseModel):
    """One health-check result for a target, produced by the probe."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    timestamp: float
    success: bool
    latency_ms: int | None = None
    status_code: int | None = None
    error_message: str | None = None


class Metrics(BaseModel):
    """Aggregated view of a target's recent health, recomputed per evaluation."""

    target_id: str
    consecutive_failures: int = Field(default=0, ge=0)
    avg_latency_ms: float = 0.0
    error_rate_last_hour: float = Field(default=0.0, ge=0.0, le=1.0)
    sample_count: int = 0
    # True when history was unavailable and metrics fell back to defaults
    degraded: bool = False


# ── Incident Types ─────────────────────────────────────────────


class Severity(StrEnum):
    """Business impact classification."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Priority(StrEnum):
    """Response urgency. P1 is the most urgent."""

    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"


class IncidentStatus(StrEnum):
    """Incident lifecycle states."""

    INVESTIGATING = "investigating"
    IDENTIFIED = "identified"
    MONITORING = "monitoring"
    RESOLVED = "resolved"


_SEVERITY_PRIORITY: dict[Severity, Priority] = {
    Severity.CRITICAL: Priority.P1,
    Severity.HIGH: Priority.P2,
    Severity.MEDIUM: Priority.P3,
    Severity.LOW: Priority.P4,
}

_SEVERITY_LADDER: list[Severity] = [
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


def priority_for_severity(severity: Severity) -> Priority:
    """The only severity → priority mapping in the system."""
    return _SEVERITY_PRIORITY[severity]


def next_severity(severity: Severity) -> Severity:
    """One step up the escalation ladder; CRITICAL is a fixed point."""
    idx = _SEVERITY_LADDER.index(severity)
    return _SEVERITY_LADDER[min(idx + 1, len(_SEVERITY_LADDER) - 1)]


def most_urgent(a: Priority, b: Priority) -> Priority:
    """Return the more urgent of two priorities (P1 beats P4)."""
    return min(a, b, key=lambda p: int(p.value[1:]))


class Incident(BaseModel):
    """An incident, created in INVESTIGATING and mutated only via transitions."""

    id: str
    title: str
    description: str = ""
    status: IncidentStatus = IncidentStatus.INVESTIGATING
    severity: Severity
    priority: Priority
    affected_targets: list[str] = Field(default_factory=list)
    reporter_id: str = ""
    detection_rule_id: str | None = None
    created_at: float = 0.0
    resolved_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.status != IncidentStatus.RESOLVED


class IncidentUpdate(BaseModel):
    """Append-only audit entry. ``status`` is set iff the update records a status change."""

    incident_id: str
    status: IncidentStatus | None = None
    description: str
    actor_id: str
    created_at: float = 0.0


# ── Detection Types ────────────────────────────────────────────


class RuleInfo(BaseModel):
    """Read-only description of a detection rule (predicate not exposed)."""

    id: str
    name: str
    description: str
    severity: Severity
    cooldown_secs: float

    @property
    def cooldown_minutes(self) -> float:
        return self.cooldown_secs / 60.0


class FiredRule(BaseModel):
    """A rule that fired for a target during one evaluation."""

    rule: RuleInfo
    target_id: str
    fired_at: float
    metrics: Metrics
    sample: HealthSample


class AnalysisResult(BaseModel):
    """Outcome of analysing one target."""

    target_id: str
    analyzed: bool = False
    reason: str = ""
    sample_timestamp: float | None = None
    fired_rules: list[str] = Field(default_factory=list)
    incident_ids: list[str] = Field(default_factory=list)
    # open incidents that received a note instead of a duplicate (dedupe mode)
    updated_incident_ids: list[str] = Field(default_factory=list)


# ── Events ─────────────────────────────────────────────────────


class IncidentEventType(StrEnum):
    """Type of incident lifecycle event."""

    INCIDENT_CREATED = "INCIDENT_CREATED"
    INCIDENT_STATUS_CHANGED = "INCIDENT_STATUS_CHANGED"
    INCIDENT_ESCALATED = "INCIDENT_ESCALATED"


class IncidentEvent(BaseModel):
    """Event emitted by the lifecycle manager for downstream listeners."""

    event_type: IncidentEventType
    incident_id: str
    incident: Incident | None = None
    previous_status: IncidentStatus | None = None
    new_status: IncidentStatus | None = None
    new_severity: Severity | None = None
    actor_id: str = ""
    reason: str = ""
    timestamp: float = 0.0


# ── System Status ──────────────────────────────────────────────


class ServiceHealth(StrEnum):
    """Derived public status of a target or of the whole system."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    MAJOR_OUTAGE = "major_outage"


class SystemStatusSnapshot(BaseModel):
    """Overall status recomputed from open incidents."""

    overall: ServiceHealth = ServiceHealth.OPERATIONAL
    targets: dict[str, ServiceHealth] = Field(default_factory=dict)
    open_incidents: int = 0
    computed_at: float = 0.0
