"""Automatic detection: metric aggregation, rule catalogue, cooldowns, engine."""

from incident_engine.detection.aggregator import aggregate, fallback_metrics
from incident_engine.detection.cooldown import (
    CooldownEntry,
    CooldownStore,
    CooldownTracker,
    InMemoryCooldownStore,
)
from incident_engine.detection.engine import DetectionEngine
from incident_engine.detection.exceptions import (
    DetectionError,
    RuleNotFoundError,
    RulePredicateError,
    TargetNotFoundError,
)
from incident_engine.detection.rules import DetectionRule, RuleCatalogue, build_default_rules

__all__ = [
    "CooldownEntry",
    "CooldownStore",
    "CooldownTracker",
    "DetectionEngine",
    "DetectionError",
    "DetectionRule",
    "InMemoryCooldownStore",
    "RuleCatalogue",
    "RuleNotFoundError",
    "RulePredicateError",
    "TargetNotFoundError",
    "aggregate",
    "build_default_rules",
    "fallback_metrics",
]
