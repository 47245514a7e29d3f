"""Alerting and decision logging for incident events."""

from incident_engine.monitor.channels import NotificationChannel, WebhookChannel
from incident_engine.monitor.dispatcher import AlertDispatcher
from incident_engine.monitor.factory import (
    IncidentStack,
    create_incident_stack,
    create_monitor_stack,
)
from incident_engine.monitor.formatters import format_incident_event, is_regression
from incident_engine.monitor.types import AlertLevel, AlertMessage

__all__ = [
    "AlertDispatcher",
    "AlertLevel",
    "AlertMessage",
    "IncidentStack",
    "NotificationChannel",
    "WebhookChannel",
    "create_incident_stack",
    "create_monitor_stack",
    "format_incident_event",
    "is_regression",
]
