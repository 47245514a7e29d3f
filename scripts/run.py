#!/usr/bin/env python3
"""Incident engine CLI: inspect the rule catalogue or replay recorded samples.

Usage::

    # Print the detection rule catalogue (with config overrides applied)
    python scripts/run.py rules --config config/settings.yaml

    # Replay a JSONL file of health samples through detection
    python scripts/run.py replay samples.jsonl

Each replay line is one health sample::

    {"target_id": "checkout-api", "timestamp": 1760000000.0,
     "success": false, "latency_ms": 30500, "status_code": 504,
     "error_message": "upstream timeout"}

Replay drives every component from a virtual clock set to each sample's
timestamp, so cooldowns behave as they would have live.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import structlog
from pydantic import ValidationError

from incident_engine.core.config import Settings, load_settings
from incident_engine.core.logging import setup_logging
from incident_engine.core.types import HealthSample
from incident_engine.detection.rules import build_default_rules
from incident_engine.monitor.factory import create_incident_stack
from incident_engine.samples.source import InMemorySampleSource

logger = structlog.get_logger(__name__)


class VirtualClock:
    """Callable clock advanced explicitly by the replay loop."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def load_samples(path: str) -> list[HealthSample]:
    """Read a JSONL file of health samples, sorted by timestamp."""
    samples: list[HealthSample] = []
    with open(path) as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                samples.append(HealthSample.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as exc:
                raise ValueError(f"{path}:{lineno}: invalid sample: {exc}") from exc
    samples.sort(key=lambda s: s.timestamp)
    return samples


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Automatic incident detection engine.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("rules", help="Print the detection rule catalogue")

    replay = sub.add_parser("replay", help="Replay a JSONL file of health samples")
    replay.add_argument("samples", help="Path to samples JSONL file")

    return parser.parse_args(argv)


def print_rules(settings: Settings) -> int:
    catalogue = build_default_rules(settings.detection)
    print(f"{'RULE':<32} {'SEVERITY':<10} {'COOLDOWN':>9}  NAME")
    print("-" * 72)
    for info in catalogue.infos():
        print(
            f"{info.id:<32} {info.severity.value:<10}"
            f" {info.cooldown_minutes:>7.0f}m  {info.name}"
        )
    return 0


async def run_replay(path: str, settings: Settings) -> int:
    try:
        samples = load_samples(path)
    except (OSError, ValueError) as exc:
        print(f"Cannot load samples: {exc}", file=sys.stderr)
        return 1
    if not samples:
        print("No samples to replay.", file=sys.stderr)
        return 1

    clock = VirtualClock(samples[0].timestamp)
    source = InMemorySampleSource()
    stack = create_incident_stack(source, settings=settings, clock=clock)

    logger.info("replay_starting", samples=len(samples), path=path)
    try:
        for sample in samples:
            clock.now = sample.timestamp
            source.record(sample)
            await stack.engine.on_sample(sample)
    finally:
        await stack.close()

    incidents = await stack.lifecycle.store.find_open_incidents()
    print()
    print(f"Replayed {len(samples)} samples across {len(source.targets)} target(s)")
    print(f"Open incidents: {len(incidents)}")
    print("-" * 72)
    for incident in sorted(incidents, key=lambda i: i.created_at):
        print(
            f"  {incident.id}  {incident.severity.value:<8} {incident.priority.value}"
            f"  {incident.title}"
        )
    print()
    print(f"System status: {stack.status.current.overall.value}")
    print(f"Engine stats: {stack.engine.stats}")
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings(args.config)
    setup_logging(
        level=args.log_level or settings.logging.level,
        config=settings.logging,
    )

    if args.command == "rules":
        sys.exit(print_rules(settings))
    sys.exit(asyncio.run(run_replay(args.samples, settings)))


if __name__ == "__main__":
    main()
