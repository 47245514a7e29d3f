"""Notification channels: generic JSON webhook delivery."""

from __future__ import annotations

import abc

import aiohttp
import structlog

from incident_engine.core.config import WebhookConfig
from incident_engine.monitor.types import AlertMessage

logger = structlog.get_logger(__name__)


class NotificationChannel(abc.ABC):
    """Base class for alert delivery channels."""

    @abc.abstractmethod
    async def send(self, msg: AlertMessage) -> bool:
        """Send an alert message. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class WebhookChannel(NotificationChannel):
    """POSTs each alert as a JSON document to a configured URL."""

    def __init__(self, config: WebhookConfig) -> None:
        self._url = config.url.get_secret_value()
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    @staticmethod
    def build_payload(msg: AlertMessage) -> dict[str, object]:
        return {
            "level": msg.level.name,
            "title": msg.title,
            "body": msg.body,
            "fields": msg.fields,
            "event_type": msg.source_event_type,
            "target_id": msg.target_id,
            "timestamp": msg.timestamp,
        }

    async def send(self, msg: AlertMessage) -> bool:
        if not self._url:
            logger.warning("webhook_url_missing", title=msg.title)
            return False

        try:
            session = self._get_session()
            async with session.post(self._url, json=self.build_payload(msg)) as resp:
                if 200 <= resp.status < 300:
                    return True
                body = await resp.text()
                logger.warning(
                    "webhook_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except Exception:
            logger.exception("webhook_send_error")
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
