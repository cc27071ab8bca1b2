"""Deterministic last-writer-wins merge policy.

Timestamps are compared per record; no global clock is involved. This module
contains no store bookkeeping, only the comparison rules.
"""

from __future__ import annotations

import math
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

UPDATED_AT_FIELD = "updatedAt"

# Values above this are epoch milliseconds rather than seconds.
_MS_THRESHOLD = 1e11


def parse_timestamp_ms(value: Any) -> float | None:
    """Convert an ``updatedAt`` value to epoch milliseconds.

    Accepts ISO-8601 strings (``Z`` suffix included), ``datetime`` objects and
    numeric epochs in seconds or milliseconds. Returns ``None`` when the value
    is missing or cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return moment.timestamp() * 1000.0
    if isinstance(value, (int, float)):
        ts = float(value)
        if math.isnan(ts) or math.isinf(ts):
            return None
        return ts if abs(ts) > _MS_THRESHOLD else ts * 1000.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp_ms(float(text))
        except ValueError:
            pass
        try:
            return parse_timestamp_ms(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def record_timestamp_ms(record: Mapping[str, Any] | None, *, default: float) -> float:
    """``updatedAt`` of *record* in epoch ms, or *default* when absent."""
    if not record:
        return default
    parsed = parse_timestamp_ms(record.get(UPDATED_AT_FIELD))
    return default if parsed is None else parsed


def should_accept_record(
    existing: Mapping[str, Any],
    incoming: Mapping[str, Any],
    *,
    now_ms: float | None = None,
) -> bool:
    """Decide whether *incoming* may overwrite *existing*.

    Policy:
    - incoming wins when its ``updatedAt`` is greater than or equal to the
      stored one (ties go to the newer delivery).
    - a missing incoming ``updatedAt`` counts as "now", so it always wins.
    - a missing stored ``updatedAt`` counts as 0.
    """
    if now_ms is None:
        now_ms = time.time() * 1000.0
    existing_ts = record_timestamp_ms(existing, default=0.0)
    incoming_ts = record_timestamp_ms(incoming, default=now_ms)
    return incoming_ts >= existing_ts


def snapshot_sort_key(record: Mapping[str, Any]) -> float:
    """Sort key for snapshots: ``updatedAt`` in ms, missing sorts as oldest."""
    return record_timestamp_ms(record, default=0.0)
