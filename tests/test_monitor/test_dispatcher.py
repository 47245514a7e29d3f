"""Tests for AlertDispatcher: routing, throttling, CRITICAL bypass, decision logging."""

from __future__ import annotations

from unittest.mock import patch

from incident_engine.core.types import (
    Incident,
    IncidentEvent,
    IncidentEventType,
    IncidentStatus,
    Priority,
    Severity,
)
from incident_engine.monitor.channels import NotificationChannel
from incident_engine.monitor.dispatcher import AlertDispatcher
from incident_engine.monitor.types import AlertLevel, AlertMessage

# ── Helpers ─────────────────────────────────────────────────────


class FakeChannel(NotificationChannel):
    """In-memory channel for testing."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[AlertMessage] = []
        self._fail = fail
        self.closed = False

    async def send(self, msg: AlertMessage) -> bool:
        if self._fail:
            raise ConnectionError("fake error")
        self.sent.append(msg)
        return True

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _event(
    severity: Severity = Severity.MEDIUM,
    target: str = "checkout-api",
    event_type: IncidentEventType = IncidentEventType.INCIDENT_CREATED,
) -> IncidentEvent:
    incident = Incident(
        id=f"inc-{target}",
        title=f"{target} degraded",
        severity=severity,
        priority=Priority.P3,
        affected_targets=[target],
    )
    return IncidentEvent(
        event_type=event_type,
        incident_id=incident.id,
        incident=incident,
        new_severity=severity,
        new_status=IncidentStatus.INVESTIGATING,
        timestamp=1000.0,
    )


def _dispatcher(throttle: float = 30.0, **kw: object) -> tuple[AlertDispatcher, FakeChannel, FakeClock]:
    ch = FakeChannel(**kw)  # type: ignore[arg-type]
    clock = FakeClock()
    return AlertDispatcher(channels=[ch], throttle_secs=throttle, clock=clock), ch, clock


# ── Routing ─────────────────────────────────────────────────────


class TestRouting:
    async def test_incident_event_routed(self) -> None:
        disp, ch, _ = _dispatcher(throttle=0)
        await disp.on_incident_event(_event())
        assert len(ch.sent) == 1
        assert ch.sent[0].title == "New incident: checkout-api degraded"

    async def test_direct_send_bypasses_throttle(self) -> None:
        disp, ch, _ = _dispatcher()
        msg = AlertMessage(level=AlertLevel.INFO, title="drill", source_event_type="X")
        await disp.send(msg)
        await disp.send(msg)
        assert len(ch.sent) == 2

    async def test_debug_is_log_only(self) -> None:
        disp, ch, _ = _dispatcher(throttle=0)
        await disp._handle(AlertMessage(level=AlertLevel.DEBUG, title="noise"))
        assert ch.sent == []


# ── Throttling ──────────────────────────────────────────────────


class TestThrottle:
    async def test_same_type_and_target_throttled(self) -> None:
        disp, ch, clock = _dispatcher(throttle=30)
        await disp.on_incident_event(_event())
        clock.now = 10
        await disp.on_incident_event(_event())
        assert len(ch.sent) == 1
        assert disp.suppressed == 1

    async def test_throttle_expires(self) -> None:
        disp, ch, clock = _dispatcher(throttle=30)
        await disp.on_incident_event(_event())
        clock.now = 31
        await disp.on_incident_event(_event())
        assert len(ch.sent) == 2

    async def test_other_target_not_throttled(self) -> None:
        disp, ch, _ = _dispatcher(throttle=30)
        await disp.on_incident_event(_event(target="checkout-api"))
        await disp.on_incident_event(_event(target="search"))
        assert len(ch.sent) == 2

    async def test_other_event_type_not_throttled(self) -> None:
        disp, ch, _ = _dispatcher(throttle=30)
        await disp.on_incident_event(_event())
        await disp.on_incident_event(
            _event(event_type=IncidentEventType.INCIDENT_STATUS_CHANGED),
        )
        assert len(ch.sent) == 2

    async def test_critical_bypasses_throttle(self) -> None:
        disp, ch, _ = _dispatcher(throttle=30)
        await disp.on_incident_event(_event(Severity.CRITICAL))
        await disp.on_incident_event(_event(Severity.CRITICAL))
        assert len(ch.sent) == 2
        assert all(m.level == AlertLevel.CRITICAL for m in ch.sent)


# ── Failures & lifecycle ────────────────────────────────────────


class TestChannelFailures:
    async def test_channel_error_swallowed(self) -> None:
        disp, _, _ = _dispatcher(throttle=0, fail=True)
        await disp.on_incident_event(_event())

    async def test_other_channels_still_receive(self) -> None:
        bad = FakeChannel(fail=True)
        good = FakeChannel()
        disp = AlertDispatcher(channels=[bad, good], throttle_secs=0)
        await disp.on_incident_event(_event())
        assert len(good.sent) == 1

    async def test_close_closes_channels(self) -> None:
        disp, ch, _ = _dispatcher()
        await disp.close()
        assert ch.closed


class TestDecisionLog:
    async def test_every_event_logged(self) -> None:
        disp, _, _ = _dispatcher(throttle=30)
        with patch("incident_engine.monitor.dispatcher.decision_logger") as mock_log:
            await disp.on_incident_event(_event())
            await disp.on_incident_event(_event())
        assert mock_log.info.call_count == 2
        kwargs = mock_log.info.call_args.kwargs
        assert kwargs["alert_level"] == "WARNING"
        assert kwargs["target_id"] == "checkout-api"
