from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pylingoloop.connectivity import ConnectionStatus, ConnectivityMonitor
from pylingoloop.feed import ChannelState, FeedChannel, LocalFeedClient
from pylingoloop.state.events import EntityKind
from pylingoloop.subscriber import ChangeFeedSubscriber


async def _drain() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


class _RefusingFeedClient:
    async def open_channel(self, name: str) -> FeedChannel:
        raise ConnectionError(f"cannot open {name}")

    async def remove_channel(self, channel: FeedChannel) -> None:
        raise AssertionError("nothing to remove")


def _subscriber(
    client: Any,
    monitor: ConnectivityMonitor,
    events: list[tuple[EntityKind, dict[str, Any]]],
) -> ChangeFeedSubscriber:
    return ChangeFeedSubscriber(client, monitor, lambda kind, payload: events.append((kind, payload)))


@pytest.mark.asyncio
async def test_opens_one_channel_per_kind() -> None:
    client = LocalFeedClient()
    monitor = ConnectivityMonitor(feed_available=True)
    subscriber = _subscriber(client, monitor, [])

    await subscriber.start()
    await _drain()

    assert subscriber.subscribed_kinds == (EntityKind.AUDIO_FILE, EntityKind.TRANSCRIPT_RUN, EntityKind.USAGE_LOG)
    assert len(client.channels("public:AudioFile")) == 1
    assert len(client.channels("public:TranscriptRun")) == 1
    assert len(client.channels("public:UsageLog")) == 1
    assert monitor.status == ConnectionStatus.CONNECTED
    await subscriber.stop()


@pytest.mark.asyncio
async def test_payloads_are_dispatched_per_kind() -> None:
    client = LocalFeedClient()
    monitor = ConnectivityMonitor(feed_available=True)
    events: list[tuple[EntityKind, dict[str, Any]]] = []
    subscriber = ChangeFeedSubscriber(
        client,
        monitor,
        lambda kind, payload: events.append((kind, payload)),
        namespace="tenant",
    )

    await subscriber.start([EntityKind.TRANSCRIPT_RUN])
    assert client.publish("tenant:TranscriptRun", {"eventType": "INSERT", "new": {"id": "r1"}}) == 1
    assert client.publish("tenant:AudioFile", {"eventType": "INSERT", "new": {"id": "a1"}}) == 0
    await _drain()

    assert events == [(EntityKind.TRANSCRIPT_RUN, {"eventType": "INSERT", "new": {"id": "r1"}})]
    await subscriber.stop()


@pytest.mark.asyncio
async def test_channel_states_drive_monitor() -> None:
    client = LocalFeedClient(auto_subscribe=False)
    monitor = ConnectivityMonitor(feed_available=True)
    subscriber = _subscriber(client, monitor, [])

    await subscriber.start([EntityKind.AUDIO_FILE])
    await _drain()
    assert monitor.status == ConnectionStatus.CONNECTING

    client.set_state("public:AudioFile", ChannelState.SUBSCRIBED)
    await _drain()
    assert monitor.status == ConnectionStatus.CONNECTED

    client.set_state("public:AudioFile", ChannelState.TIMED_OUT)
    await _drain()
    assert monitor.status == ConnectionStatus.OFFLINE

    client.set_state("public:AudioFile", ChannelState.CHANNEL_ERROR, error="denied")
    await _drain()
    assert monitor.status == ConnectionStatus.ERROR
    await subscriber.stop()


@pytest.mark.asyncio
async def test_failing_handler_keeps_dispatch_alive() -> None:
    client = LocalFeedClient()
    monitor = ConnectivityMonitor(feed_available=True)
    seen: list[str] = []

    def _handler(_kind: EntityKind, payload: dict[str, Any]) -> None:
        if payload.get("boom"):
            raise RuntimeError("handler bug")
        seen.append(payload["new"]["id"])

    subscriber = ChangeFeedSubscriber(client, monitor, _handler)
    await subscriber.start([EntityKind.AUDIO_FILE])
    client.publish("public:AudioFile", {"boom": True})
    client.publish("public:AudioFile", {"eventType": "INSERT", "new": {"id": "a1"}})
    await _drain()

    assert seen == ["a1"]
    await subscriber.stop()


@pytest.mark.asyncio
async def test_open_failure_reports_error() -> None:
    monitor = ConnectivityMonitor(feed_available=True)
    subscriber = _subscriber(_RefusingFeedClient(), monitor, [])

    await subscriber.start([EntityKind.AUDIO_FILE])

    assert subscriber.subscribed_kinds == ()
    assert monitor.status == ConnectionStatus.ERROR
    await subscriber.stop()


@pytest.mark.asyncio
async def test_stop_releases_channels() -> None:
    client = LocalFeedClient()
    monitor = ConnectivityMonitor(feed_available=True)
    subscriber = _subscriber(client, monitor, [])
    await subscriber.start()
    channel = client.channels("public:AudioFile")[0]

    await subscriber.stop()

    assert channel.closed is True
    assert client.channels("public:AudioFile") == []
    assert subscriber.subscribed_kinds == ()
