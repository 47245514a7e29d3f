"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class RuleThresholds(BaseModel):
    """Tuning values for the built-in detection rule catalogue."""

    critical_consecutive_failures: int = 5
    high_consecutive_failures: int = 3
    identified_consecutive_failures: int = 2
    high_avg_latency_ms: float = 10000.0
    monitoring_avg_latency_ms: float = 5000.0
    high_error_rate: float = 0.5
    timeout_latency_ms: float = 30000.0


class DetectionConfig(BaseModel):
    """Automatic incident detection configuration."""

    lookback_samples: int = 10
    error_rate_window_secs: float = 3600.0
    system_actor_id: str = "system-auto-detection"
    dedupe_open_incidents: bool = False
    disabled_rules: list[str] = Field(default_factory=list)
    cooldown_overrides_secs: dict[str, float] = Field(default_factory=dict)
    thresholds: RuleThresholds = RuleThresholds()


class WebhookConfig(BaseModel):
    """Generic JSON webhook for incident alerts."""

    enabled: bool = False
    url: SecretStr = SecretStr("")
    timeout_secs: float = 10.0


class AlertsConfig(BaseModel):
    """Incident alert routing configuration."""

    throttle_secs: float = 30.0
    webhook: WebhookConfig = WebhookConfig()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    # JSONL file that also receives every alert routing decision; off when empty
    decision_log_path: str = ""
    # third-party loggers held at WARNING or above
    quiet_loggers: list[str] = Field(default_factory=lambda: ["aiohttp", "asyncio"])


class Settings(BaseModel):
    """Root settings container."""

    detection: DetectionConfig = DetectionConfig()
    alerts: AlertsConfig = AlertsConfig()
    logging: LoggingConfig = LoggingConfig()
    # target id -> display name used in incident titles
    targets: dict[str, str] = Field(default_factory=dict)


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
