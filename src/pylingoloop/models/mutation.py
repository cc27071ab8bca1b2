"""Pending mutation models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pylingoloop.models._base import parse_record_timestamp


def _iso_z(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _utcnow_iso() -> str:
    return _iso_z(datetime.now(UTC))


class MutationRequest(BaseModel):
    """The HTTP call a pending mutation replays: ``METHOD path`` + JSON body."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    path: str
    method: str = "POST"
    body: Any = None

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value

    @field_validator("method", mode="before")
    @classmethod
    def _normalize_method(cls, value: Any) -> str:
        if value is None:
            return "POST"
        method = str(value).strip().upper()
        if not method:
            return "POST"
        return method


class PendingMutation(BaseModel):
    """A local write not yet confirmed by the Remote API.

    ``request`` is kept as the raw mapping it was registered or persisted
    with; :meth:`parsed_request` validates it at replay time so a malformed
    entry stays queued instead of being dropped on load. Unknown fields
    round-trip verbatim; ``createdAt`` given as a ``datetime`` or an epoch is
    stored as ISO-8601 text.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    id: str
    request: dict[str, Any] | None = None
    created_at: str | None = Field(default=None, alias="createdAt")

    @field_validator("id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        if value is None or value == "":
            raise ValueError("mutation id must be non-empty")
        return str(value)

    @field_validator("request", mode="before")
    @classmethod
    def _request_mapping(cls, value: Any) -> Any:
        if isinstance(value, MutationRequest):
            return value.model_dump()
        if not isinstance(value, dict):
            return None
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _timestamp_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        moment = parse_record_timestamp(value)
        return _iso_z(moment) if moment is not None else None

    @classmethod
    def create(
        cls,
        path: str,
        *,
        method: str = "POST",
        body: Any = None,
        mutation_id: str | None = None,
    ) -> PendingMutation:
        """Build a mutation with a generated id and the current UTC time."""
        request = MutationRequest(path=path, method=method, body=body)
        return cls(
            id=mutation_id or uuid.uuid4().hex,
            request=request.model_dump(),
            created_at=_utcnow_iso(),
        )

    def parsed_request(self) -> MutationRequest | None:
        """The validated request, or ``None`` when it is missing or malformed."""
        if self.request is None:
            return None
        try:
            return MutationRequest.model_validate(self.request)
        except ValidationError:
            return None

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
