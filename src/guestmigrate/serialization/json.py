"""
JSON serialization utilities for guestmigrate types.

Used for the durable attempt history and guest backup snapshots. Record
payloads themselves are serialized by pydantic (see guestmigrate.records).

Example:
    >>> from guestmigrate.serialization import json_dumps, json_loads
    >>> from uuid import uuid4
    >>>
    >>> json_str = json_dumps({"attempt_id": uuid4(), "keys": {"profile"}})
    >>> parsed = json_loads(json_str)
"""

import json
from datetime import datetime
from typing import Any
from uuid import UUID


class MigrationJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime and set values.

    - UUID objects: string representation
    - datetime objects: ISO 8601 string
    - set/frozenset: sorted list
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, set | frozenset):
            return sorted(obj)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize object to JSON string with UUID, datetime and set support."""
    return json.dumps(obj, cls=MigrationJSONEncoder)


def json_loads(s: str | bytes) -> Any:
    """
    Deserialize a JSON string.

    UUID and datetime strings are not converted back; callers such as
    MigrationAttempt.from_dict do that.
    """
    return json.loads(s)


__all__ = [
    "MigrationJSONEncoder",
    "json_dumps",
    "json_loads",
]
