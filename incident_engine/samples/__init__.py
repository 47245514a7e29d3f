"""Health sample sources."""

from incident_engine.samples.source import InMemorySampleSource, SampleSource

__all__ = [
    "InMemorySampleSource",
    "SampleSource",
]
