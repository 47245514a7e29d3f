"""Central alert dispatcher: routes incident events to channels with throttling."""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from incident_engine.core.types import IncidentEvent
from incident_engine.monitor.channels import NotificationChannel
from incident_engine.monitor.formatters import format_incident_event
from incident_engine.monitor.types import AlertLevel, AlertMessage

# Dedicated structured logger for decision records.
decision_logger = structlog.get_logger("decision_log")

logger = structlog.get_logger(__name__)


class AlertDispatcher:
    """Routes incident events to notification channels.

    - Every event is logged via *decision_logger*.
    - DEBUG alerts are log-only and never sent to channels.
    - INFO/WARNING alerts are throttled per (event type, target).
    - CRITICAL alerts bypass the throttle and are dispatched immediately.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        throttle_secs: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channels: list[NotificationChannel] = channels or []
        self._throttle_secs = throttle_secs
        self._clock = clock
        # throttle key -> last dispatch time
        self._last_sent: dict[str, float] = {}
        self._suppressed = 0

    @property
    def suppressed(self) -> int:
        """Alerts dropped by the throttle so far."""
        return self._suppressed

    # ── Callback entry point ────────────────────────────────────

    async def on_incident_event(self, event: IncidentEvent) -> None:
        msg = format_incident_event(event)
        await self._handle(msg)

    # ── Direct send ─────────────────────────────────────────────

    async def send(self, msg: AlertMessage) -> None:
        """Dispatch an AlertMessage directly (bypasses throttle)."""
        self._log_decision(msg)
        await self._dispatch_to_channels(msg)

    # ── Internal routing ────────────────────────────────────────

    async def _handle(self, msg: AlertMessage) -> None:
        self._log_decision(msg)

        if msg.level == AlertLevel.DEBUG:
            return

        now = self._clock()
        if msg.level == AlertLevel.CRITICAL:
            self._last_sent[msg.throttle_key] = now
            await self._dispatch_to_channels(msg)
            return

        last = self._last_sent.get(msg.throttle_key, -float("inf"))
        if now - last < self._throttle_secs:
            self._suppressed += 1
            logger.debug("alert_throttled", key=msg.throttle_key, title=msg.title)
            return

        self._last_sent[msg.throttle_key] = now
        await self._dispatch_to_channels(msg)

    def _log_decision(self, msg: AlertMessage) -> None:
        decision_logger.info(
            "decision",
            alert_level=msg.level.name,
            title=msg.title,
            source_event_type=msg.source_event_type,
            target_id=msg.target_id,
            fields=msg.fields,
        )

    async def _dispatch_to_channels(self, msg: AlertMessage) -> None:
        for ch in self._channels:
            try:
                await ch.send(msg)
            except Exception:
                logger.exception(
                    "channel_dispatch_error",
                    channel=type(ch).__name__,
                    title=msg.title,
                )

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        for ch in self._channels:
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=type(ch).__name__)
