"""
Typed record payloads stored under logical keys.

Each logical key holds one record kind. Records are immutable pydantic
models discriminated by ``kind``:

Field records (one value per field):
    - ProfileRecord
    - BodyMetricsRecord
    - DietPreferencesRecord
    - WorkoutPreferencesRecord

Collection records (lists of entries with stable ids):
    - WorkoutSessionsRecord
    - MealLogsRecord
    - BodyMeasurementsRecord

A record is "empty" when every content field is None, "" or an empty
container; empty records are never worth migrating. merged_with() is the
building block of conflict resolution: the receiver's non-empty values win
and the other record only fills the gaps (field records) or contributes
entries with ids the receiver does not have (collection records).
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from guestmigrate.exceptions import InvalidKeyError, RecordDecodeError


def _is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list | tuple | dict | set | frozenset):
        return len(value) == 0
    return False


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class BaseUserRecord(BaseModel):
    """
    Base class for all record kinds.

    Attributes:
        kind: Discriminator naming the record kind.
        updated_at: When the record was last modified on the device that wrote it.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    META_FIELDS: ClassVar[frozenset[str]] = frozenset({"kind", "updated_at"})

    kind: str
    updated_at: datetime | None = None

    def content(self) -> dict[str, Any]:
        """Return the user-visible fields, without kind and timestamp."""
        return self.model_dump(mode="json", exclude=set(self.META_FIELDS))

    def is_empty(self) -> bool:
        return all(_is_empty_value(v) for v in self.content().values())

    def same_content(self, other: BaseUserRecord) -> bool:
        """True if both records carry the same user data, ignoring timestamps."""
        return self.kind == other.kind and self.content() == other.content()

    def merged_with(self, other: Self) -> Self:
        raise NotImplementedError


class FieldRecord(BaseUserRecord):
    """A record whose fields merge independently."""

    def merged_with(self, other: Self) -> Self:
        updates: dict[str, Any] = {}
        for name in self.content():
            if _is_empty_value(getattr(self, name)):
                theirs = getattr(other, name)
                if not _is_empty_value(theirs):
                    updates[name] = theirs
        updates["updated_at"] = _latest(self.updated_at, other.updated_at)
        return self.model_copy(update=updates)


class LogEntry(BaseModel):
    """An entry of a collection record, identified by ``id``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)


class CollectionRecord(BaseUserRecord):
    """A record holding entries; merging is a union by entry id."""

    entries: list[Any] = Field(default_factory=list)

    def merged_with(self, other: Self) -> Self:
        seen = {entry.id for entry in self.entries}
        extra = [entry for entry in other.entries if entry.id not in seen]
        return self.model_copy(
            update={
                "entries": [*self.entries, *extra],
                "updated_at": _latest(self.updated_at, other.updated_at),
            }
        )


# =============================================================================
# Field records
# =============================================================================


class ProfileRecord(FieldRecord):
    kind: Literal["profile"] = "profile"
    first_name: str | None = None
    last_name: str | None = None
    age: int | None = Field(default=None, ge=0, le=150)
    gender: str | None = None
    country: str | None = None
    occupation_type: str | None = None


class BodyMetricsRecord(FieldRecord):
    kind: Literal["body_metrics"] = "body_metrics"
    height_cm: float | None = Field(default=None, gt=0)
    weight_kg: float | None = Field(default=None, gt=0)
    target_weight_kg: float | None = Field(default=None, gt=0)
    body_fat_percentage: float | None = Field(default=None, ge=0, le=100)
    waist_cm: float | None = Field(default=None, gt=0)


class DietPreferencesRecord(FieldRecord):
    kind: Literal["diet_preferences"] = "diet_preferences"
    diet_type: str | None = None
    allergies: list[str] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    cuisine_preferences: list[str] = Field(default_factory=list)
    daily_calorie_target: int | None = Field(default=None, gt=0)


class WorkoutPreferencesRecord(FieldRecord):
    kind: Literal["workout_preferences"] = "workout_preferences"
    location: str | None = None
    intensity: str | None = None
    session_minutes: int | None = Field(default=None, gt=0)
    equipment: list[str] = Field(default_factory=list)
    workout_types: list[str] = Field(default_factory=list)
    primary_goals: list[str] = Field(default_factory=list)


# =============================================================================
# Collection records
# =============================================================================


class WorkoutSessionEntry(LogEntry):
    workout_name: str | None = None
    started_at: datetime | None = None
    duration_minutes: int | None = Field(default=None, ge=0)
    calories_burned: float | None = Field(default=None, ge=0)


class MealLogEntry(LogEntry):
    meal_type: str | None = None
    logged_at: datetime | None = None
    calories: float | None = Field(default=None, ge=0)
    protein_g: float | None = Field(default=None, ge=0)
    carbs_g: float | None = Field(default=None, ge=0)
    fat_g: float | None = Field(default=None, ge=0)


class BodyMeasurementEntry(LogEntry):
    measured_at: datetime | None = None
    weight_kg: float | None = Field(default=None, gt=0)
    body_fat_percentage: float | None = Field(default=None, ge=0, le=100)


class WorkoutSessionsRecord(CollectionRecord):
    kind: Literal["workout_sessions"] = "workout_sessions"
    entries: list[WorkoutSessionEntry] = Field(default_factory=list)


class MealLogsRecord(CollectionRecord):
    kind: Literal["meal_logs"] = "meal_logs"
    entries: list[MealLogEntry] = Field(default_factory=list)


class BodyMeasurementsRecord(CollectionRecord):
    kind: Literal["body_measurements"] = "body_measurements"
    entries: list[BodyMeasurementEntry] = Field(default_factory=list)


UserRecord = Annotated[
    ProfileRecord
    | BodyMetricsRecord
    | DietPreferencesRecord
    | WorkoutPreferencesRecord
    | WorkoutSessionsRecord
    | MealLogsRecord
    | BodyMeasurementsRecord,
    Field(discriminator="kind"),
]
"""Sum type over the built-in record kinds."""


DEFAULT_RECORD_TYPES: dict[str, type[BaseUserRecord]] = {
    "profile": ProfileRecord,
    "body_metrics": BodyMetricsRecord,
    "diet_preferences": DietPreferencesRecord,
    "workout_preferences": WorkoutPreferencesRecord,
    "workout_sessions": WorkoutSessionsRecord,
    "meal_logs": MealLogsRecord,
    "body_measurements": BodyMeasurementsRecord,
}


class RecordRegistry:
    """
    The set of logical keys the engine knows about, and their record types.

    Key order is preserved and determines processing order.
    """

    def __init__(self, record_types: Mapping[str, type[BaseUserRecord]] | None = None) -> None:
        types = dict(DEFAULT_RECORD_TYPES if record_types is None else record_types)
        for key in types:
            if not key or not key.strip():
                raise InvalidKeyError(key)
        self._types = types

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self._types)

    def __contains__(self, key: object) -> bool:
        return key in self._types

    def __len__(self) -> int:
        return len(self._types)

    def record_type(self, key: str) -> type[BaseUserRecord]:
        try:
            return self._types[key]
        except KeyError:
            raise InvalidKeyError(key) from None


class RecordCodec:
    """
    Converts records to and from the bytes held by storage backends.

    Example:
        >>> codec = RecordCodec()
        >>> payload = codec.encode(BodyMetricsRecord(weight_kg=82))
        >>> codec.decode("body_metrics", payload).weight_kg
        82.0
    """

    def __init__(self, registry: RecordRegistry | None = None) -> None:
        self._registry = registry or RecordRegistry()

    @property
    def registry(self) -> RecordRegistry:
        return self._registry

    def encode(self, record: BaseUserRecord) -> bytes:
        return record.model_dump_json().encode("utf-8")

    def decode(self, key: str, payload: bytes) -> BaseUserRecord:
        """
        Decode ``payload`` stored under ``key``.

        Raises:
            InvalidKeyError: If key is not registered.
            RecordDecodeError: If the payload is not valid JSON for the key's
                record type (including a mismatched ``kind``).
        """
        record_type = self._registry.record_type(key)
        try:
            return record_type.model_validate_json(payload)
        except ValidationError as e:
            raise RecordDecodeError(
                f"Invalid {record_type.__name__} payload: {e.error_count()} validation error(s)",
                key=key,
            ) from e


__all__ = [
    "BaseUserRecord",
    "FieldRecord",
    "CollectionRecord",
    "LogEntry",
    "ProfileRecord",
    "BodyMetricsRecord",
    "DietPreferencesRecord",
    "WorkoutPreferencesRecord",
    "WorkoutSessionEntry",
    "WorkoutSessionsRecord",
    "MealLogEntry",
    "MealLogsRecord",
    "BodyMeasurementEntry",
    "BodyMeasurementsRecord",
    "UserRecord",
    "DEFAULT_RECORD_TYPES",
    "RecordRegistry",
    "RecordCodec",
]
