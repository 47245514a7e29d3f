"""Core module: settings, domain types, logging setup."""

from incident_engine.core.config import (
    AlertsConfig,
    DetectionConfig,
    LoggingConfig,
    RuleThresholds,
    Settings,
    WebhookConfig,
    get_settings,
    load_settings,
    reset_settings,
)
from incident_engine.core.logging import setup_logging
from incident_engine.core.types import (
    AnalysisResult,
    FiredRule,
    HealthSample,
    Incident,
    IncidentEvent,
    IncidentEventType,
    IncidentStatus,
    IncidentUpdate,
    Metrics,
    Priority,
    RuleInfo,
    ServiceHealth,
    Severity,
    SystemStatusSnapshot,
    most_urgent,
    next_severity,
    priority_for_severity,
)

__all__ = [
    "AlertsConfig",
    "AnalysisResult",
    "DetectionConfig",
    "FiredRule",
    "HealthSample",
    "Incident",
    "IncidentEvent",
    "IncidentEventType",
    "IncidentStatus",
    "IncidentUpdate",
    "LoggingConfig",
    "Metrics",
    "Priority",
    "RuleInfo",
    "RuleThresholds",
    "ServiceHealth",
    "Settings",
    "Severity",
    "SystemStatusSnapshot",
    "WebhookConfig",
    "get_settings",
    "load_settings",
    "most_urgent",
    "next_severity",
    "priority_for_severity",
    "reset_settings",
    "setup_logging",
]
