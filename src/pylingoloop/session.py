"""Credential state supplied by the external session provider."""

from __future__ import annotations

import time
from typing import Protocol

from pydantic import BaseModel, ConfigDict, field_validator


class Credential(BaseModel):
    """Bearer credential attached to every Remote API request.

    Parameters
    ----------
    access_token : str
        Opaque bearer token issued by the session provider.
    user_id : str or None
        Account the token belongs to, when the provider knows it.
    expires_at : float or None
        Epoch seconds after which the provider considers the token stale.
        pylingoloop never refreshes tokens; it only stops using expired ones.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    access_token: str
    user_id: str | None = None
    expires_at: float | None = None

    @field_validator("access_token")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("access_token must be non-empty")
        return value

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at

    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"

    def __repr__(self) -> str:
        return f"Credential(user_id={self.user_id!r}, expires_at={self.expires_at!r})"

    __str__ = __repr__


class SessionProvider(Protocol):
    """Source of the current credential (e.g. the host app's auth layer)."""

    def current_credential(self) -> Credential | None: ...


def coerce_credential(value: Credential | str | None) -> Credential | None:
    """Accept a :class:`Credential`, a raw token string, or ``None``."""
    if value is None or isinstance(value, Credential):
        return value
    token = value.strip()
    return Credential(access_token=token) if token else None
