"""Convenience factory for wiring detection, lifecycle, status and alerts."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from incident_engine.core.config import AlertsConfig, Settings, get_settings
from incident_engine.detection.cooldown import CooldownStore
from incident_engine.detection.engine import DetectionEngine
from incident_engine.incidents.lifecycle import IncidentLifecycleManager
from incident_engine.incidents.store import IncidentStore, InMemoryIncidentStore
from incident_engine.monitor.channels import NotificationChannel, WebhookChannel
from incident_engine.monitor.dispatcher import AlertDispatcher
from incident_engine.samples.source import SampleSource
from incident_engine.status.tracker import SystemStatusTracker


def create_monitor_stack(config: AlertsConfig) -> AlertDispatcher:
    """Build a dispatcher with the channels enabled in *config*."""
    channels: list[NotificationChannel] = []

    if config.webhook.enabled:
        channels.append(WebhookChannel(config.webhook))

    return AlertDispatcher(
        channels=channels,
        throttle_secs=config.throttle_secs,
    )


@dataclass
class IncidentStack:
    """Everything a process needs to detect and track incidents."""

    engine: DetectionEngine
    lifecycle: IncidentLifecycleManager
    status: SystemStatusTracker
    dispatcher: AlertDispatcher

    async def close(self) -> None:
        await self.dispatcher.close()


def create_incident_stack(
    source: SampleSource,
    settings: Settings | None = None,
    store: IncidentStore | None = None,
    cooldown_store: CooldownStore | None = None,
    clock: Callable[[], float] = time.time,
) -> IncidentStack:
    """Wire engine → lifecycle → (status tracker, dispatcher) from settings."""
    settings = settings or get_settings()
    store = store or InMemoryIncidentStore()

    status = SystemStatusTracker(store, clock=clock)
    lifecycle = IncidentLifecycleManager(
        store, recompute_status=status.recompute, clock=clock,
    )
    dispatcher = create_monitor_stack(settings.alerts)
    lifecycle.on_event(dispatcher.on_incident_event)

    engine = DetectionEngine(
        source,
        lifecycle,
        config=settings.detection,
        cooldown_store=cooldown_store,
        target_names=settings.targets,
        clock=clock,
    )
    return IncidentStack(
        engine=engine,
        lifecycle=lifecycle,
        status=status,
        dispatcher=dispatcher,
    )
