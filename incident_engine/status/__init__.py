"""System status derived from open incidents."""

from incident_engine.status.tracker import (
    SystemStatusTracker,
    compute_snapshot,
    health_for_severity,
)

__all__ = [
    "SystemStatusTracker",
    "compute_snapshot",
    "health_for_severity",
]
