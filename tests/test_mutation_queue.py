from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from typing import Any

import pytest

from pylingoloop.exceptions import LingoLoopApiError, LingoLoopTransportError
from pylingoloop.models.mutation import PendingMutation
from pylingoloop.persistence import MemoryKeyValueStore, PersistenceAdapter
from pylingoloop.queue import MutationQueue
from pylingoloop.session import Credential

_KEY = "lingoloop.cache.pendingMutations.v1"


class _ScriptedTransport:
    """Replays scripted outcomes per path; records every call."""

    def __init__(self, outcomes: dict[str, Exception | None] | None = None) -> None:
        self._outcomes = outcomes or {}
        self.calls: list[tuple[str, str, Any, str | None]] = []

    async def request(
        self,
        method: str,
        path: str,
        *,
        credential: Credential | None,
        params: dict[str, Any] | None = None,
        body: Any = None,
        expect_json: bool = True,
    ) -> Any:
        self.calls.append((method, path, body, credential.access_token if credential else None))
        outcome = self._outcomes.get(path)
        if outcome is not None:
            raise outcome
        return ""


class _GatedTransport(_ScriptedTransport):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        result = await super().request(method, path, **kwargs)
        self.entered.set()
        await self.release.wait()
        return result


def _queue(store: MemoryKeyValueStore | None = None) -> MutationQueue:
    return MutationQueue(PersistenceAdapter(store or MemoryKeyValueStore()), _KEY)


def _credential() -> Credential:
    return Credential(access_token="token-1", user_id="user-1")


def test_register_persists_full_queue() -> None:
    store = MemoryKeyValueStore()
    queue = _queue(store)

    queue.register(PendingMutation.create("/api/audios/a", method="patch", body={"title": "x"}, mutation_id="m1"))
    queue.register({"id": "m2", "request": {"path": "/api/audios/b", "method": "DELETE"}})

    persisted = json.loads(store.get(_KEY) or "[]")
    assert [entry["id"] for entry in persisted] == ["m1", "m2"]
    assert persisted[0]["request"]["method"] == "PATCH"
    assert "createdAt" in persisted[0]


def test_clear_removes_entries_and_persists() -> None:
    store = MemoryKeyValueStore()
    queue = _queue(store)
    queue.register({"id": "m1", "request": {"path": "/a"}})
    queue.register({"id": "m2", "request": {"path": "/b"}})

    assert queue.clear("m1") is True
    assert queue.clear("missing") is False

    assert [entry.id for entry in queue.pending] == ["m2"]
    assert [entry["id"] for entry in json.loads(store.get(_KEY) or "[]")] == ["m2"]


def test_load_restores_queue_and_drops_entries_without_id() -> None:
    store = MemoryKeyValueStore(
        {
            _KEY: json.dumps(
                [
                    {"id": "m1", "request": {"path": "/a"}, "createdAt": "2024-01-01T00:00:00Z", "source": "ui"},
                    {"request": {"path": "/orphan"}},
                    {"id": "m2", "request": "not a mapping"},
                ]
            )
        }
    )
    queue = _queue(store)

    assert queue.load() == 2
    assert [entry.id for entry in queue.pending] == ["m1", "m2"]
    assert queue.pending[0].to_storage()["source"] == "ui"


def test_register_accepts_datetime_created_at() -> None:
    store = MemoryKeyValueStore()
    queue = _queue(store)

    entry = queue.register(
        {"id": "m1", "request": {"path": "/api/x"}, "createdAt": datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)}
    )

    assert entry.created_at == "2023-11-14T22:13:20Z"
    persisted = json.loads(store.get(_KEY) or "[]")
    assert persisted == [{"id": "m1", "request": {"path": "/api/x"}, "createdAt": "2023-11-14T22:13:20Z"}]


def test_load_keeps_entries_with_epoch_or_odd_created_at(caplog: pytest.LogCaptureFixture) -> None:
    store = MemoryKeyValueStore(
        {
            _KEY: json.dumps(
                [
                    {"id": "m1", "request": {"path": "/api/x"}, "createdAt": 1700000000000},
                    {"id": "m2", "request": {"path": "/api/y"}, "createdAt": {"odd": True}},
                ]
            )
        }
    )
    queue = _queue(store)

    with caplog.at_level(logging.WARNING, logger="pylingoloop.queue"):
        assert queue.load() == 2

    assert [entry.id for entry in queue.pending] == ["m1", "m2"]
    assert queue.pending[0].created_at == "2023-11-14T22:13:20Z"
    assert queue.pending[1].created_at is None
    assert "Dropping" not in caplog.text


@pytest.mark.asyncio
async def test_flush_without_credential_is_noop() -> None:
    queue = _queue()
    queue.register({"id": "m1", "request": {"path": "/a"}})
    transport = _ScriptedTransport()

    await queue.flush(transport, None)

    assert transport.calls == []
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_flush_replays_in_order_and_clears_successes() -> None:
    queue = _queue()
    queue.register({"id": "m1", "request": {"path": "/a", "method": "PUT", "body": {"v": 1}}})
    queue.register({"id": "m2", "request": {"path": "/b"}})
    transport = _ScriptedTransport()

    await queue.flush(transport, _credential())

    assert transport.calls == [("PUT", "/a", {"v": 1}, "token-1"), ("POST", "/b", None, "token-1")]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_rejected_mutation_stays_queued_while_later_ones_replay() -> None:
    queue = _queue()
    queue.register({"id": "m1", "request": {"path": "/fails"}})
    queue.register({"id": "m2", "request": {"path": "/ok"}})
    transport = _ScriptedTransport({"/fails": LingoLoopApiError("rejected", status_code=500, endpoint="/fails")})

    await queue.flush(transport, _credential())

    assert [call[1] for call in transport.calls] == ["/fails", "/ok"]
    assert [entry.id for entry in queue.pending] == ["m1"]


@pytest.mark.asyncio
async def test_network_error_continues_with_next_entry() -> None:
    queue = _queue()
    queue.register({"id": "m1", "request": {"path": "/down"}})
    queue.register({"id": "m2", "request": {"path": "/ok"}})
    transport = _ScriptedTransport({"/down": LingoLoopTransportError("connection reset")})

    await queue.flush(transport, _credential())

    assert [entry.id for entry in queue.pending] == ["m1"]
    assert queue.is_flushing is False


@pytest.mark.asyncio
async def test_malformed_request_is_skipped_and_kept() -> None:
    queue = _queue()
    queue.register({"id": "m1", "request": {"path": "relative"}})
    queue.register({"id": "m2"})
    queue.register({"id": "m3", "request": {"path": "/ok"}})
    transport = _ScriptedTransport()

    await queue.flush(transport, _credential())

    assert [call[1] for call in transport.calls] == ["/ok"]
    assert [entry.id for entry in queue.pending] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_concurrent_flush_is_skipped() -> None:
    queue = _queue()
    queue.register({"id": "m1", "request": {"path": "/a"}})
    transport = _GatedTransport()

    first = asyncio.create_task(queue.flush(transport, _credential()))
    await transport.entered.wait()
    assert queue.is_flushing is True

    await queue.flush(transport, _credential())
    assert len(transport.calls) == 1

    transport.release.set()
    await first
    assert len(queue) == 0
    assert queue.is_flushing is False


@pytest.mark.asyncio
async def test_entries_registered_during_flush_wait_for_next_pass() -> None:
    queue = _queue()
    queue.register({"id": "m1", "request": {"path": "/a"}})
    transport = _GatedTransport()

    first = asyncio.create_task(queue.flush(transport, _credential()))
    await transport.entered.wait()
    queue.register({"id": "m2", "request": {"path": "/b"}})
    transport.release.set()
    await first

    assert [call[1] for call in transport.calls] == ["/a"]
    assert [entry.id for entry in queue.pending] == ["m2"]
