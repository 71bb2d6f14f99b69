"""
OpenTelemetry availability check for guestmigrate.

OpenTelemetry is an optional dependency (``pip install guestmigrate[telemetry]``).
This module is the single place that decides whether it is importable.
"""

from __future__ import annotations

try:
    import opentelemetry.trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


def should_trace(enable_tracing: bool) -> bool:
    """Return True if tracing is enabled and OpenTelemetry is installed."""
    return enable_tracing and OTEL_AVAILABLE


__all__ = [
    "OTEL_AVAILABLE",
    "should_trace",
]
