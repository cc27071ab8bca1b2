"""Helpers for safe debug logging.

Pending mutations and list responses pass through the logs when replay or
sync fails. Request bodies can carry passwords or tokens, and the bearer
credential must never be logged, so payloads are redacted first.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "newpassword",
        "token",
        "accesstoken",
        "refreshtoken",
        "access_token",
        "refresh_token",
        "authorization",
        "cookie",
        "secret",
        "apikey",
    }
)

_MAX_DEPTH = 20
_BEARER_PREFIX = "bearer "


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for warning/debug logs."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, BaseModel):
        return redact_for_log(
            value.model_dump(by_alias=True, mode="json"),
            max_string=max_string,
            _depth=_depth + 1,
        )

    if isinstance(value, str):
        if value[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
            return f"{value[: len(_BEARER_PREFIX) - 1]} <redacted>"
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if key.lower() in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
