"""DetectionEngine: turns health samples into incidents without human input.

Pipeline per target: sample → aggregate metrics → evaluate rule catalogue
(skipping rules in cooldown) → open one incident per fired rule.
"""

from __future__ import annotations

import asyncio
import time
import weakref
from collections.abc import Callable, Mapping

import structlog

from incident_engine.core.config import DetectionConfig
from incident_engine.core.types import (
    AnalysisResult,
    FiredRule,
    HealthSample,
    Incident,
    Metrics,
    RuleInfo,
)
from incident_engine.detection.aggregator import aggregate, fallback_metrics
from incident_engine.detection.cooldown import CooldownStore, CooldownTracker
from incident_engine.detection.exceptions import RulePredicateError, TargetNotFoundError
from incident_engine.detection.narrative import incident_description, incident_title
from incident_engine.detection.rules import RuleCatalogue, build_default_rules
from incident_engine.incidents.exceptions import PersistenceError
from incident_engine.incidents.lifecycle import IncidentLifecycleManager
from incident_engine.samples.source import SampleSource

logger = structlog.stdlib.get_logger()


class DetectionEngine:
    """Owns the rule catalogue and cooldown state for one deployment.

    The engine is driven externally: either a probe calls ``on_sample``
    after every health check, or a scheduler calls ``analyze`` /
    ``batch_analyze`` periodically. Analyses of one target are serialized;
    different targets run independently.

    Usage::

        engine = DetectionEngine(source, lifecycle)
        probe.on_sample(engine.on_sample)

        # or, from a scheduler:
        results = await engine.batch_analyze(["checkout-api", "search"])
    """

    def __init__(
        self,
        source: SampleSource,
        lifecycle: IncidentLifecycleManager,
        config: DetectionConfig | None = None,
        rules: RuleCatalogue | None = None,
        cooldown_store: CooldownStore | None = None,
        target_names: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._lifecycle = lifecycle
        self._config = config or DetectionConfig()
        self._rules = rules if rules is not None else build_default_rules(self._config)
        self._cooldowns = CooldownTracker(
            {rule.id: rule.cooldown_secs for rule in self._rules},
            cooldown_store,
        )
        self._target_names = dict(target_names or {})
        self._clock = clock

        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._global_lock = asyncio.Lock()
        # target_id -> timestamp of the last sample analysed
        self._last_analyzed: dict[str, float] = {}

        # Stats
        self._analyses = 0
        self._rules_fired = 0
        self._incidents_created = 0
        self._incident_failures = 0
        self._predicate_failures = 0

    @property
    def stats(self) -> dict[str, int]:
        """Current engine statistics."""
        return {
            "analyses": self._analyses,
            "rules_fired": self._rules_fired,
            "incidents_created": self._incidents_created,
            "incident_failures": self._incident_failures,
            "predicate_failures": self._predicate_failures,
        }

    @property
    def cooldowns(self) -> CooldownTracker:
        return self._cooldowns

    async def _get_lock(self, target_id: str) -> asyncio.Lock:
        async with self._global_lock:
            lock = self._locks.get(target_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[target_id] = lock
            return lock

    # ── Rule introspection ───────────────────────────────────────

    def list_rules(self) -> list[RuleInfo]:
        """Catalogue in evaluation order, without predicates."""
        return self._rules.infos()

    def get_rule(self, rule_id: str) -> RuleInfo:
        return self._rules.get(rule_id).info()

    async def is_suppressed(self, rule_id: str, target_id: str) -> bool:
        self._rules.get(rule_id)
        return await self._cooldowns.is_suppressed(rule_id, target_id, self._clock())

    async def cooldown_remaining(self, rule_id: str, target_id: str) -> float:
        """Seconds until *rule_id* may fire again for *target_id*."""
        self._rules.get(rule_id)
        return await self._cooldowns.remaining(rule_id, target_id, self._clock())

    async def clear_cooldowns(self) -> int:
        """Drop all suppression state (tests and incident-response drills)."""
        return await self._cooldowns.clear()

    # ── Evaluation ───────────────────────────────────────────────

    async def gather_metrics(self, target_id: str, latest: HealthSample, now: float) -> Metrics:
        """Aggregate the target's history; degrade to the latest sample on failure."""
        try:
            recent = await self._source.recent(target_id, self._config.lookback_samples)
            hourly = await self._source.since(
                target_id, now - self._config.error_rate_window_secs,
            )
        except Exception as exc:
            logger.warning(
                "aggregation_degraded",
                target_id=target_id,
                reason="history_unavailable",
                error=str(exc),
            )
            return fallback_metrics(latest)

        metrics = aggregate(
            target_id,
            recent,
            latest,
            hourly_samples=hourly,
            now=now,
            lookback=self._config.lookback_samples,
            window_secs=self._config.error_rate_window_secs,
        )
        if metrics.degraded:
            logger.debug(
                "aggregation_degraded",
                target_id=target_id,
                reason="insufficient_history",
                samples=metrics.sample_count,
            )
        return metrics

    async def evaluate(
        self,
        target_id: str,
        latest: HealthSample,
        metrics: Metrics,
        now: float | None = None,
    ) -> list[FiredRule]:
        """Run the catalogue in order and record a cooldown for every rule that fires.

        A suppressed rule is skipped without evaluating its predicate. A
        predicate that raises is logged and counts as not fired.
        """
        now = self._clock() if now is None else now
        fired: list[FiredRule] = []

        for rule in self._rules:
            if await self._cooldowns.is_suppressed(rule.id, target_id, now):
                logger.debug("detection_rule_suppressed", rule_id=rule.id, target_id=target_id)
                continue

            try:
                matched = bool(rule.predicate(metrics, latest))
            except Exception as exc:
                self._predicate_failures += 1
                err = RulePredicateError(rule.id, target_id, exc)
                logger.error(
                    "rule_predicate_failed",
                    rule_id=rule.id,
                    target_id=target_id,
                    error=str(err),
                    exc_info=exc,
                )
                continue

            if not matched:
                continue

            # Another evaluation may have fired this rule since the check above.
            if not await self._cooldowns.try_acquire(rule.id, target_id, now):
                logger.debug("detection_rule_suppressed", rule_id=rule.id, target_id=target_id)
                continue

            self._rules_fired += 1
            logger.warning(
                "detection_rule_fired",
                rule_id=rule.id,
                target_id=target_id,
                severity=rule.severity,
                consecutive_failures=metrics.consecutive_failures,
                avg_latency_ms=round(metrics.avg_latency_ms, 1),
                error_rate=round(metrics.error_rate_last_hour, 3),
            )
            fired.append(FiredRule(
                rule=rule.info(),
                target_id=target_id,
                fired_at=now,
                metrics=metrics,
                sample=latest,
            ))

        return fired

    # ── Incident creation ────────────────────────────────────────

    async def _find_open_for_rule(self, target_id: str, rule_id: str) -> Incident | None:
        for incident in await self._lifecycle.store.find_open_incidents_for_target(target_id):
            if incident.detection_rule_id == rule_id:
                return incident
        return None

    async def _open_incident(self, fired: FiredRule, result: AnalysisResult) -> None:
        actor = self._config.system_actor_id
        title = incident_title(fired, self._target_names)

        if self._config.dedupe_open_incidents:
            existing = await self._find_open_for_rule(fired.target_id, fired.rule.id)
            if existing is not None:
                await self._lifecycle.add_update(
                    existing.id, actor, f"Detection rule fired again: {title}",
                )
                result.updated_incident_ids.append(existing.id)
                logger.info(
                    "auto_incident_deduplicated",
                    incident_id=existing.id,
                    rule_id=fired.rule.id,
                    target_id=fired.target_id,
                )
                return

        incident = await self._lifecycle.create_incident(
            title=title,
            description=incident_description(fired, self._target_names),
            severity=fired.rule.severity,
            affected_targets=[fired.target_id],
            reporter_id=actor,
            detection_rule_id=fired.rule.id,
        )
        self._incidents_created += 1
        result.incident_ids.append(incident.id)

        if fired.sample.error_message:
            try:
                await self._lifecycle.add_update(
                    incident.id, actor, f"Detected error: {fired.sample.error_message}",
                )
            except Exception as exc:
                logger.warning(
                    "auto_incident_context_failed",
                    incident_id=incident.id,
                    error=str(exc),
                )

    async def _open_incidents(
        self, fired_rules: list[FiredRule], result: AnalysisResult,
    ) -> dict[str, str]:
        """Open one incident per fired rule. Failures are isolated per rule."""
        failures: dict[str, str] = {}
        for fired in fired_rules:
            try:
                await self._open_incident(fired, result)
            except Exception as exc:
                self._incident_failures += 1
                failures[fired.rule.id] = str(exc)
                logger.error(
                    "auto_incident_failed",
                    rule_id=fired.rule.id,
                    target_id=fired.target_id,
                    error=str(exc),
                )
        return failures

    # ── Entry points ─────────────────────────────────────────────

    async def analyze(
        self, target_id: str, latest: HealthSample | None = None,
    ) -> AnalysisResult:
        """Analyse one target and open incidents for every rule that fires.

        When *latest* is omitted the most recent recorded sample is used; a
        target with no samples is a no-op. Re-analysing a sample that was
        already analysed is also a no-op.

        Raises:
            TargetNotFoundError: *latest* omitted and the target is unknown.
            PersistenceError: one or more incidents could not be written.
                Cooldowns for those rules stay recorded.
        """
        lock = await self._get_lock(target_id)
        async with lock:
            if latest is None:
                if not await self._source.has_target(target_id):
                    # Forget targets the source no longer knows.
                    self._last_analyzed.pop(target_id, None)
                    raise TargetNotFoundError(target_id)
                latest = await self._source.latest(target_id)
                if latest is None:
                    logger.info("analysis_skipped", target_id=target_id, reason="no_samples")
                    return AnalysisResult(
                        target_id=target_id, reason="No health check data found",
                    )
            elif latest.target_id != target_id:
                raise ValueError(
                    f"Sample belongs to {latest.target_id}, not {target_id}",
                )

            previous = self._last_analyzed.get(target_id)
            if previous is not None and latest.timestamp <= previous:
                logger.debug(
                    "analysis_skipped",
                    target_id=target_id,
                    reason="no_new_sample",
                    sample_timestamp=latest.timestamp,
                )
                return AnalysisResult(
                    target_id=target_id,
                    reason="No new sample since last analysis",
                    sample_timestamp=latest.timestamp,
                )
            self._last_analyzed[target_id] = latest.timestamp
            self._analyses += 1

            now = self._clock()
            metrics = await self.gather_metrics(target_id, latest, now)
            fired = await self.evaluate(target_id, latest, metrics, now)

            result = AnalysisResult(
                target_id=target_id,
                analyzed=True,
                sample_timestamp=latest.timestamp,
                fired_rules=[f.rule.id for f in fired],
            )
            failures = await self._open_incidents(fired, result)

        if failures:
            raise PersistenceError(
                f"Failed to open {len(failures)} incident(s) for {target_id}",
                target_id=target_id,
                failures=failures,
            )
        return result

    async def on_sample(self, sample: HealthSample) -> AnalysisResult | None:
        """Probe callback. Never raises; failures are logged."""
        try:
            return await self.analyze(sample.target_id, sample)
        except Exception:
            logger.exception("analysis_failed", target_id=sample.target_id)
            return None

    async def _analyze_item(self, target_id: str) -> AnalysisResult:
        try:
            return await self.analyze(target_id)
        except TargetNotFoundError:
            return AnalysisResult(target_id=target_id, reason="Target not found")
        except Exception as exc:
            logger.error("batch_analysis_failed", target_id=target_id, error=str(exc))
            return AnalysisResult(target_id=target_id, reason=str(exc))

    async def batch_analyze(self, target_ids: list[str]) -> list[AnalysisResult]:
        """Analyse targets concurrently; each failure is reported per item."""
        if not target_ids:
            raise ValueError("target_ids must not be empty")
        logger.info("batch_analysis_started", targets=len(target_ids))
        results = await asyncio.gather(*(self._analyze_item(t) for t in target_ids))
        return list(results)

    def snapshot(self) -> dict[str, object]:
        """Return a snapshot of engine state."""
        return {
            **self.stats,
            "rules": len(self._rules),
            "targets_seen": len(self._last_analyzed),
        }
