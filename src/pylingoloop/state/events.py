"""Entity kinds and normalized change feed events.

Every feed payload is converted into a :class:`FeedEvent` before it reaches a
store. Only the engine applies them.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class EntityKind(StrEnum):
    AUDIO_FILE = "AudioFile"
    TRANSCRIPT_RUN = "TranscriptRun"
    USAGE_LOG = "UsageLog"

    @classmethod
    def parse(cls, value: Any) -> EntityKind | None:
        """Return the matching kind, or ``None`` for kinds this release does not know."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


class FeedEventType(StrEnum):
    """Row-level change type.

    Values the feed sends that have no mapped member resolve to ``UNKNOWN``
    instead of raising, and are dispatched as upserts.
    """

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value: object) -> FeedEventType:
        if isinstance(value, str):
            upper = value.strip().upper()
            for member in cls:
                if member.value == upper:
                    return member
        return cls.UNKNOWN


def _row_or_none(value: Any) -> dict[str, Any] | None:
    if isinstance(value, Mapping) and value:
        return dict(value)
    return None


class FeedEvent(BaseModel):
    """A normalized change notification for one row of one entity kind."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_type: FeedEventType = Field(
        default=FeedEventType.UNKNOWN,
        validation_alias=AliasChoices("eventType", "event_type", "type"),
    )
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @field_validator("event_type", mode="before")
    @classmethod
    def _coerce_event_type(cls, value: Any) -> FeedEventType:
        if value is None:
            return FeedEventType.UNKNOWN
        return FeedEventType(str(value))

    @field_validator("new", "old", mode="before")
    @classmethod
    def _coerce_row(cls, value: Any) -> dict[str, Any] | None:
        # Feeds send ``{}`` for the missing side of a change.
        return _row_or_none(value)

    @property
    def is_delete(self) -> bool:
        return self.event_type == FeedEventType.DELETE

    @property
    def record_id(self) -> Any:
        """Id of the affected row (``old`` for deletes, ``new`` otherwise)."""
        row = self.old if self.is_delete else self.new
        return row.get("id") if row else None

    @classmethod
    def from_payload(cls, payload: Any) -> FeedEvent | None:
        """Normalize a raw feed payload. Non-mapping payloads yield ``None``."""
        if isinstance(payload, FeedEvent):
            return payload
        if not isinstance(payload, Mapping):
            return None
        return cls.model_validate(dict(payload))
