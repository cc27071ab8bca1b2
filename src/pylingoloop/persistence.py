"""Durable local state: key-value backends and the tolerant persistence adapter.

Persistence is a durability aid only. Every correctness guarantee of the
engine holds from in-memory state alone, so read and write failures are
logged and absorbed here rather than propagated.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pylingoloop.exceptions import LingoLoopPersistenceError

_logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class KeyValueStore(Protocol):
    """Raw string storage surviving process restarts (or not, for tests)."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store. State is lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileKeyValueStore:
    """One UTF-8 file per key under *directory*.

    Writes go to a temporary file in the same directory and are moved into
    place with :func:`os.replace`, so a crash mid-write leaves either the old
    or the new value, never a truncated one.
    """

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        return self._directory / f"{_UNSAFE_FILENAME_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LingoLoopPersistenceError(f"Cannot read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise LingoLoopPersistenceError(f"Cannot write {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise LingoLoopPersistenceError(f"Cannot delete {path}: {exc}") from exc


class PersistenceAdapter:
    """JSON encode/decode on top of a :class:`KeyValueStore`.

    ``load`` never raises and ``save`` swallows write failures; both log a
    warning instead.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def load(self, key: str, fallback: Any) -> Any:
        """Return the decoded value stored under *key*, or *fallback*.

        Missing keys, ``null`` values and malformed content all yield
        *fallback*.
        """
        try:
            raw = self._store.get(key)
        except Exception:
            _logger.warning("Failed to read cached state %s", key, exc_info=True)
            return fallback
        if not raw:
            return fallback
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            _logger.warning("Failed to parse cached state %s: %s", key, exc)
            return fallback
        return fallback if parsed is None else parsed

    def load_list(self, key: str) -> list[Any]:
        """Like :meth:`load` with an empty-list fallback; non-list values are discarded."""
        value = self.load(key, [])
        if not isinstance(value, list):
            _logger.warning("Discarding cached state %s: expected a list, got %s", key, type(value).__name__)
            return []
        return value

    def save(self, key: str, value: Any) -> None:
        """Encode and write *value*; ``None`` deletes *key* instead."""
        try:
            if value is None:
                self._store.delete(key)
                return
            encoded = json.dumps(value, separators=(",", ":"), default=str)
            self._store.set(key, encoded)
        except Exception:
            _logger.warning("Failed to write cached state %s", key, exc_info=True)
