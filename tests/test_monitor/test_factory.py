"""Tests for the monitor factory: channel wiring and the full incident stack."""

from __future__ import annotations

from pydantic import SecretStr

from incident_engine.core.config import AlertsConfig, Settings, WebhookConfig
from incident_engine.core.types import HealthSample, ServiceHealth
from incident_engine.monitor.channels import WebhookChannel
from incident_engine.monitor.dispatcher import AlertDispatcher
from incident_engine.monitor.factory import create_incident_stack, create_monitor_stack
from incident_engine.samples.source import InMemorySampleSource

T0 = 1_760_000_000.0


class TestMonitorStack:
    def test_no_channels_enabled(self) -> None:
        disp = create_monitor_stack(AlertsConfig())
        assert isinstance(disp, AlertDispatcher)
        assert len(disp._channels) == 0

    def test_webhook_enabled(self) -> None:
        config = AlertsConfig(
            webhook=WebhookConfig(enabled=True, url=SecretStr("https://hooks.example.com/x")),
        )
        disp = create_monitor_stack(config)
        assert len(disp._channels) == 1
        assert isinstance(disp._channels[0], WebhookChannel)

    def test_throttle_passed_through(self) -> None:
        disp = create_monitor_stack(AlertsConfig(throttle_secs=5))
        assert disp._throttle_secs == 5


class TestIncidentStack:
    async def test_samples_to_status(self) -> None:
        source = InMemorySampleSource()
        settings = Settings(targets={"checkout-api": "Checkout API"})
        stack = create_incident_stack(source, settings=settings, clock=lambda: T0)
        events: list[object] = []
        stack.lifecycle.on_event(events.append)

        for i in range(5):
            sample = HealthSample(target_id="checkout-api", timestamp=T0 - 50 + i * 10, success=False)
            source.record(sample)
            await stack.engine.on_sample(sample)

        open_incidents = await stack.lifecycle.store.find_open_incidents()
        assert any(i.title.startswith("Checkout API - Critical") for i in open_incidents)
        assert stack.status.current.overall == ServiceHealth.MAJOR_OUTAGE
        assert len(events) == len(open_incidents)
        await stack.close()
