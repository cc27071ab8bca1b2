"""Authoritative list endpoint response."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class ListPage(BaseModel):
    """One page of primary records: ``{"items": [record, ...]}``.

    Items stay plain dicts; a missing or non-list ``items`` is an empty page.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    items: list[dict[str, Any]] = []

    @field_validator("items", mode="before")
    @classmethod
    def _only_record_items(cls, value: Any) -> list[dict[str, Any]]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @classmethod
    def from_payload(cls, payload: Any) -> ListPage:
        if not isinstance(payload, dict):
            return cls()
        return cls.model_validate(payload)
