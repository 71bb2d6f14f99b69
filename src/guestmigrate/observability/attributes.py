"""
Standard span attributes for guestmigrate.

Example:
    >>> from guestmigrate.observability.attributes import ATTR_ACCOUNT_ID
    >>>
    >>> with tracer.span(
    ...     "guestmigrate.orchestrator.start_profile_migration",
    ...     {ATTR_ACCOUNT_ID: account_id},
    ... ):
    ...     pass
"""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_ACCOUNT_ID = "guestmigrate.account.id"
"""Authenticated account the guest data is claimed into."""

ATTR_ATTEMPT_ID = "guestmigrate.attempt.id"
"""Identifier of a migration attempt (UUID string)."""

ATTR_RECORD_KEY = "guestmigrate.record.key"
"""Logical record key (e.g., 'profile')."""

ATTR_RECORD_COUNT = "guestmigrate.record.count"
"""Number of records handled by an operation (integer)."""

ATTR_MIGRATION_STEP = "guestmigrate.migration.step"
"""Orchestrator step name (e.g., 'commit_remote')."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'postgresql')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'SELECT', 'INSERT')."""

__all__ = [
    "ATTR_ACCOUNT_ID",
    "ATTR_ATTEMPT_ID",
    "ATTR_RECORD_KEY",
    "ATTR_RECORD_COUNT",
    "ATTR_MIGRATION_STEP",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
]
