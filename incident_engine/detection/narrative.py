"""Pure functions producing human-facing incident text for fired rules."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from incident_engine.core.types import FiredRule


def display_name(target_id: str, names: Mapping[str, str] | None = None) -> str:
    """Human-readable target name, falling back to the id."""
    if names and target_id in names:
        return names[target_id]
    return target_id


def incident_title(fired: FiredRule, names: Mapping[str, str] | None = None) -> str:
    """Short title naming the target and the measured condition."""
    name = display_name(fired.target_id, names)
    m = fired.metrics

    match fired.rule.id:
        case "consecutive-failures-critical":
            return f"{name} - Critical service outage ({m.consecutive_failures} consecutive failures)"
        case "consecutive-failures-high":
            return f"{name} - Service unreachable ({m.consecutive_failures} consecutive failures)"
        case "high-response-time":
            return f"{name} - Slow responses (average {round(m.avg_latency_ms / 1000)}s)"
        case "high-error-rate":
            return f"{name} - High error rate ({round(m.error_rate_last_hour * 100)}%)"
        case "service-timeout":
            latency = fired.sample.latency_ms or 0
            return f"{name} - Response timeout ({round(latency / 1000)}s)"
        case _:
            return f"{name} - {fired.rule.name}"


def incident_description(fired: FiredRule, names: Mapping[str, str] | None = None) -> str:
    """Multi-line description of what was detected and the target's state."""
    name = display_name(fired.target_id, names)
    m = fired.metrics
    sample = fired.sample
    detected = datetime.fromtimestamp(fired.fired_at, tz=timezone.utc)

    lines = [
        f"Automatic monitoring detected a problem with {name}.",
        "",
        f"Detected at: {detected.isoformat(timespec='seconds')}",
        f"Detection rule: {fired.rule.name}",
        f"Rule description: {fired.rule.description}",
        "",
        "Current state:",
        f"- Latest check: {'success' if sample.success else 'failure'}",
    ]
    if sample.latency_ms is not None:
        lines.append(f"- Response time: {sample.latency_ms}ms")
    if sample.status_code is not None:
        lines.append(f"- HTTP status code: {sample.status_code}")
    lines += [
        f"- Consecutive failures: {m.consecutive_failures}",
        f"- Average response time (recent checks): {round(m.avg_latency_ms)}ms",
        f"- Error rate (last hour): {round(m.error_rate_last_hour * 100)}%",
    ]
    if sample.error_message:
        lines += ["", "Error message:", sample.error_message]
    lines += [
        "",
        "This incident was created automatically. Investigate and update its"
        " status manually once resolved.",
    ]
    return "\n".join(lines)
