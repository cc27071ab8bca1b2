"""Deterministic in-memory entity store.

One :class:`EntityStore` holds the records of a single entity kind. It is the
only component allowed to merge incoming records.
"""

from __future__ import annotations

import copy
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pylingoloop.state.events import EntityKind
from pylingoloop.state.policy import should_accept_record, snapshot_sort_key


def _now_ms() -> float:
    return time.time() * 1000.0


def _record_id(record: Any) -> Any:
    if not isinstance(record, Mapping):
        return None
    return record.get("id") or None


class EntityStore:
    """Keyed map of records for one entity kind.

    Operations are synchronous and never leave a partially-applied state
    behind, so any asyncio flow (sync, feed dispatch, replay) may call them
    between suspension points.
    """

    def __init__(self, kind: EntityKind, *, clock: Callable[[], float] = _now_ms) -> None:
        self.kind = kind
        self._clock = clock
        self._records: dict[Any, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __repr__(self) -> str:
        return f"EntityStore(kind={self.kind.value!r}, records={len(self._records)})"

    def merge_record(self, record: Mapping[str, Any] | None) -> bool:
        """Merge *record* under the last-writer-wins rule.

        Returns ``True`` when the store changed (insert or accepted update) and
        ``False`` for records without an id or strictly older than the stored
        version. Accepted updates are shallow merges: keys in *record*
        overwrite, keys it lacks are kept.
        """
        record_id = _record_id(record)
        if record_id is None:
            return False
        assert record is not None  # noqa: S101
        incoming = copy.deepcopy(dict(record))

        existing = self._records.get(record_id)
        if existing is None:
            self._records[record_id] = incoming
            return True

        if not should_accept_record(existing, incoming, now_ms=self._clock()):
            return False
        self._records[record_id] = {**existing, **incoming}
        return True

    def remove_record(self, record_id: Any) -> bool:
        """Delete the record with *record_id*, ignoring timestamps.

        Deletes carry no tombstone timestamp, so a late delete can remove a
        record that was updated after the delete was issued.
        """
        if not record_id:
            return False
        return self._records.pop(record_id, None) is not None

    def replace(self, records: Iterable[Mapping[str, Any]]) -> None:
        """Clear the store and repopulate it with *records* verbatim."""
        self._records.clear()
        self.load(records)

    def load(self, records: Iterable[Any]) -> int:
        """Insert rows without timestamp comparison; rows without id are skipped."""
        loaded = 0
        for row in records:
            record_id = _record_id(row)
            if record_id is None:
                continue
            self._records[record_id] = copy.deepcopy(dict(row))
            loaded += 1
        return loaded

    def clear(self) -> None:
        self._records.clear()

    def get(self, record_id: Any) -> dict[str, Any] | None:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def values(self) -> list[dict[str, Any]]:
        """Copies of the stored records in insertion order (persistence order)."""
        return [copy.deepcopy(record) for record in self._records.values()]

    def snapshot(self) -> list[dict[str, Any]]:
        """Materialized view ordered by ``updatedAt`` descending.

        Records without ``updatedAt`` sort last. Ties keep insertion order.
        The list is rebuilt on every call and shares no objects with the store.
        """
        return sorted(self.values(), key=snapshot_sort_key, reverse=True)
