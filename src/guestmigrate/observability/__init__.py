"""
Observability utilities for guestmigrate.

Provides composition-based tracing and standard span attribute names.

Note:
    OpenTelemetry is an optional dependency. Everything in this module
    works without it; tracers degrade to no-ops.
"""

from guestmigrate.observability.attributes import (
    ATTR_ACCOUNT_ID,
    ATTR_ATTEMPT_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_MIGRATION_STEP,
    ATTR_RECORD_COUNT,
    ATTR_RECORD_KEY,
)
from guestmigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from guestmigrate.observability.tracing import (
    OTEL_AVAILABLE,
    should_trace,
)

__all__ = [
    # Availability
    "OTEL_AVAILABLE",
    "should_trace",
    # Tracers
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_ACCOUNT_ID",
    "ATTR_ATTEMPT_ID",
    "ATTR_RECORD_KEY",
    "ATTR_RECORD_COUNT",
    "ATTR_MIGRATION_STEP",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
]
