"""Base model for records mirrored from the Remote API.

Every record view inherits from :class:`RecordModel` which provides:

* ``alias_generator=to_camel`` so camelCase API keys map to snake_case fields.
* ``extra="allow"`` so domain fields this release does not model survive.
* ``updated_at`` parsed from ISO strings or epoch numbers into UTC datetimes.

The stores keep plain dicts; these views are built on demand from snapshots.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

from pylingoloop.state.policy import parse_timestamp_ms


def parse_record_timestamp(value: Any) -> datetime | None:
    """Convert an API timestamp (ISO string, seconds or ms epoch) to a UTC datetime.

    Returns ``None`` when the value is missing or not interpretable.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    ms = parse_timestamp_ms(value)
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


RecordTimestamp = Annotated[datetime | None, BeforeValidator(parse_record_timestamp)]
"""Annotated type that coerces API timestamps to UTC datetimes."""


class RecordModel(BaseModel):
    """Read-only typed view over a mirrored record."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    id: str
    created_at: RecordTimestamp = None
    updated_at: RecordTimestamp = None
