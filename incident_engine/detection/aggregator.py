"""Pure aggregation of a target's recent health samples into Metrics.

Missing or sparse history never raises: every figure degrades to ``0``.
"""

from __future__ import annotations

from collections.abc import Sequence

from incident_engine.core.types import HealthSample, Metrics

DEFAULT_LOOKBACK = 10
DEFAULT_WINDOW_SECS = 3600.0


def _with_latest(samples: Sequence[HealthSample], latest: HealthSample) -> list[HealthSample]:
    """Ordered samples up to and including *latest*."""
    merged = [s for s in samples if s.timestamp <= latest.timestamp and s != latest]
    merged.append(latest)
    merged.sort(key=lambda s: s.timestamp)
    return merged


def consecutive_failures(window: Sequence[HealthSample]) -> int:
    """Count trailing failures, scanning back from the newest sample."""
    count = 0
    for sample in reversed(window):
        if sample.success:
            break
        count += 1
    return count


def average_latency(window: Sequence[HealthSample]) -> float:
    """Mean latency of successful samples that reported one; 0 if none."""
    latencies = [
        s.latency_ms for s in window if s.success and s.latency_ms is not None
    ]
    if not latencies:
        return 0.0
    return sum(latencies) / len(latencies)


def error_rate(samples: Sequence[HealthSample], start: float) -> float:
    """Failed / total over samples at or after *start*; 0 if none."""
    in_window = [s for s in samples if s.timestamp >= start]
    if not in_window:
        return 0.0
    failed = sum(1 for s in in_window if not s.success)
    return failed / len(in_window)


def aggregate(
    target_id: str,
    recent_samples: Sequence[HealthSample],
    latest: HealthSample,
    *,
    hourly_samples: Sequence[HealthSample] | None = None,
    now: float | None = None,
    lookback: int = DEFAULT_LOOKBACK,
    window_secs: float = DEFAULT_WINDOW_SECS,
) -> Metrics:
    """Derive a Metrics snapshot for *target_id*.

    Args:
        target_id: Target the samples belong to.
        recent_samples: Recent history, any order. Only the last *lookback*
            samples ending at *latest* feed the streak and latency figures.
        latest: The sample being analysed.
        hourly_samples: Samples for the error-rate window. Defaults to
            *recent_samples* when the caller has no separate window query.
        now: Reference time for the error-rate window. Defaults to the
            latest sample's timestamp.
        lookback: Size of the streak / latency window.
        window_secs: Length of the trailing error-rate window.
    """
    window = _with_latest(recent_samples, latest)[-max(lookback, 1):]
    pool = _with_latest(
        hourly_samples if hourly_samples is not None else recent_samples,
        latest,
    )
    reference = latest.timestamp if now is None else now

    return Metrics(
        target_id=target_id,
        consecutive_failures=consecutive_failures(window),
        avg_latency_ms=average_latency(window),
        error_rate_last_hour=error_rate(pool, reference - window_secs),
        sample_count=len(window),
        degraded=len(window) < 2,
    )


def fallback_metrics(latest: HealthSample) -> Metrics:
    """Metrics from the latest sample alone, used when history is unavailable."""
    return Metrics(
        target_id=latest.target_id,
        consecutive_failures=0 if latest.success else 1,
        avg_latency_ms=float(latest.latency_ms or 0),
        error_rate_last_hour=0.0 if latest.success else 1.0,
        sample_count=1,
        degraded=True,
    )
