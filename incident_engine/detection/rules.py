"""Detection rules as data, and the built-in ordered rule catalogue."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, replace

from incident_engine.core.config import DetectionConfig, RuleThresholds
from incident_engine.core.types import HealthSample, Metrics, RuleInfo, Severity
from incident_engine.detection.exceptions import RuleNotFoundError

# Predicates see the aggregated metrics; the latest sample is passed for
# rules defined on a single check (e.g. absolute timeout).
RulePredicate = Callable[[Metrics, HealthSample], bool]

_MINUTE = 60.0


@dataclass(frozen=True)
class DetectionRule:
    """An immutable detection rule: a pure predicate, a severity, a cooldown."""

    id: str
    name: str
    description: str
    predicate: RulePredicate
    severity: Severity
    cooldown_secs: float

    def info(self) -> RuleInfo:
        return RuleInfo(
            id=self.id,
            name=self.name,
            description=self.description,
            severity=self.severity,
            cooldown_secs=self.cooldown_secs,
        )


class RuleCatalogue:
    """Ordered, id-unique collection of rules. Iteration order is evaluation order."""

    def __init__(self, rules: Iterable[DetectionRule]) -> None:
        self._rules: tuple[DetectionRule, ...] = tuple(rules)
        self._by_id: dict[str, DetectionRule] = {}
        for rule in self._rules:
            if rule.id in self._by_id:
                raise ValueError(f"Duplicate detection rule id: {rule.id}")
            if rule.cooldown_secs < 0:
                raise ValueError(f"Negative cooldown for rule {rule.id}")
            self._by_id[rule.id] = rule

    def __iter__(self) -> Iterator[DetectionRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    def get(self, rule_id: str) -> DetectionRule:
        """Return the rule with *rule_id* or raise RuleNotFoundError."""
        try:
            return self._by_id[rule_id]
        except KeyError:
            raise RuleNotFoundError(rule_id) from None

    def infos(self) -> list[RuleInfo]:
        return [rule.info() for rule in self._rules]


def build_default_rules(config: DetectionConfig | None = None) -> RuleCatalogue:
    """Build the built-in catalogue, applying thresholds, overrides and disables."""
    cfg = config or DetectionConfig()
    t: RuleThresholds = cfg.thresholds

    rules = [
        DetectionRule(
            id="consecutive-failures-critical",
            name="Consecutive Failures - Critical",
            description=(
                f"{t.critical_consecutive_failures} consecutive failures"
                " indicate a critical service outage"
            ),
            predicate=lambda m, s: m.consecutive_failures >= t.critical_consecutive_failures,
            severity=Severity.CRITICAL,
            cooldown_secs=30 * _MINUTE,
        ),
        DetectionRule(
            id="consecutive-failures-high",
            name="Consecutive Failures - High",
            description=(
                f"{t.high_consecutive_failures} consecutive failures"
                " indicate a major service issue"
            ),
            predicate=lambda m, s: m.consecutive_failures >= t.high_consecutive_failures,
            severity=Severity.HIGH,
            cooldown_secs=15 * _MINUTE,
        ),
        DetectionRule(
            id="high-response-time",
            name="High Response Time",
            description=(
                f"Average response time exceeds {t.high_avg_latency_ms / 1000:g} seconds"
            ),
            predicate=lambda m, s: m.avg_latency_ms > t.high_avg_latency_ms,
            severity=Severity.MEDIUM,
            cooldown_secs=20 * _MINUTE,
        ),
        DetectionRule(
            id="high-error-rate",
            name="High Error Rate",
            description=f"Error rate exceeds {t.high_error_rate:.0%} in the last hour",
            predicate=lambda m, s: m.error_rate_last_hour > t.high_error_rate,
            severity=Severity.HIGH,
            cooldown_secs=30 * _MINUTE,
        ),
        DetectionRule(
            id="service-timeout",
            name="Service Timeout",
            description=(
                f"Service response time exceeds {t.timeout_latency_ms / 1000:g} seconds"
            ),
            predicate=lambda m, s: (
                s.latency_ms is not None and s.latency_ms > t.timeout_latency_ms
            ),
            severity=Severity.HIGH,
            cooldown_secs=15 * _MINUTE,
        ),
        # Status narrative rules: lower severity, human-facing incident text.
        DetectionRule(
            id="investigating",
            name="Service Under Investigation",
            description="Service issues are being investigated",
            predicate=lambda m, s: not s.success and m.consecutive_failures >= 1,
            severity=Severity.LOW,
            cooldown_secs=60 * _MINUTE,
        ),
        DetectionRule(
            id="identified",
            name="Issue Identified",
            description="Service issue has been identified and a fix is being prepared",
            predicate=lambda m, s: (
                not s.success
                and m.consecutive_failures >= t.identified_consecutive_failures
            ),
            severity=Severity.MEDIUM,
            cooldown_secs=45 * _MINUTE,
        ),
        DetectionRule(
            id="monitoring",
            name="Service Under Monitoring",
            description="Service is being monitored for elevated response times",
            predicate=lambda m, s: (
                t.monitoring_avg_latency_ms < m.avg_latency_ms <= t.high_avg_latency_ms
            ),
            severity=Severity.LOW,
            cooldown_secs=30 * _MINUTE,
        ),
    ]

    disabled = set(cfg.disabled_rules)
    overrides = cfg.cooldown_overrides_secs
    return RuleCatalogue(
        replace(r, cooldown_secs=overrides.get(r.id, r.cooldown_secs))
        for r in rules
        if r.id not in disabled
    )
