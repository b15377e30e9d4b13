"""Trace ID, configuration, collector, statistics and usage-reporting utilities for a tracing backend."""

__version__ = "0.1.0"

__all__ = [
    "attributes",
    "collectors",
    "config",
    "errors",
    "logs",
    "net",
    "reporter",
    "seed",
    "stats",
    "traceid",
    "validation",
]