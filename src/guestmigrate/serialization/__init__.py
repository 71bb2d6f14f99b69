"""Serialization utilities for guestmigrate."""

from guestmigrate.serialization.json import (
    MigrationJSONEncoder,
    json_dumps,
    json_loads,
)

__all__ = [
    "MigrationJSONEncoder",
    "json_dumps",
    "json_loads",
]
