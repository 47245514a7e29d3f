"""Domain types for the alerting subsystem."""

from __future__ import annotations

import time
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field


class AlertLevel(IntEnum):
    """Alert level: ordered so comparisons work naturally."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    CRITICAL = 3


class AlertMessage(BaseModel):
    """Normalised alert ready for dispatch to channels."""

    level: AlertLevel
    title: str
    body: str = ""
    fields: dict[str, str] = Field(default_factory=dict)
    source_event_type: str = ""
    # first affected target; part of the throttle key
    target_id: str = ""
    timestamp: float = Field(default_factory=time.time)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def throttle_key(self) -> str:
        return f"{self.source_event_type}:{self.target_id}"
