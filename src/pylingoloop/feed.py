"""Change feed channels.

A channel is a message stream for one entity kind. It yields two sorts of
messages: subscription state notifications and change payloads. The
subscriber consumes each channel from a dedicated dispatch task, so feed
clients only have to push messages into the channel, never call back into
the engine.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

_logger = logging.getLogger(__name__)


class ChannelState(StrEnum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


@dataclass(frozen=True, slots=True)
class ChannelMessage:
    """Either a state notification (``state`` set) or a change (``payload`` set)."""

    channel: str
    state: ChannelState | None = None
    payload: dict[str, Any] | None = None
    error: str | None = None


class FeedChannel(Protocol):
    name: str

    def messages(self) -> AsyncIterator[ChannelMessage]: ...

    async def close(self) -> None: ...


class FeedClient(Protocol):
    """Opens one channel per name against the change feed service."""

    async def open_channel(self, name: str) -> FeedChannel: ...

    async def remove_channel(self, channel: FeedChannel) -> None: ...


class QueueChannel:
    """Channel backed by an :class:`asyncio.Queue`.

    ``push_*`` methods must run on the event loop thread; threaded clients
    marshal through ``loop.call_soon_threadsafe`` first.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._queue: asyncio.Queue[ChannelMessage] = asyncio.Queue()
        self._closed = False

    def __repr__(self) -> str:
        return f"QueueChannel({self.name!r}, closed={self._closed})"

    @property
    def closed(self) -> bool:
        return self._closed

    def push_state(self, state: ChannelState, *, error: str | None = None) -> None:
        if self._closed:
            return
        self._queue.put_nowait(ChannelMessage(channel=self.name, state=state, error=error))

    def push_payload(self, payload: dict[str, Any]) -> None:
        if self._closed:
            return
        self._queue.put_nowait(ChannelMessage(channel=self.name, payload=payload))

    async def messages(self) -> AsyncIterator[ChannelMessage]:
        """Yield messages until a ``CLOSED`` state arrives."""
        while True:
            message = await self._queue.get()
            yield message
            if message.state == ChannelState.CLOSED:
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._queue.put_nowait(ChannelMessage(channel=self.name, state=ChannelState.CLOSED))
        self._closed = True


class LocalFeedClient:
    """In-process change feed.

    Useful for embedding the engine next to a server that already knows
    about row changes, and for tests. ``open_channel`` acknowledges the
    subscription immediately unless ``auto_subscribe`` is disabled.
    """

    def __init__(self, *, auto_subscribe: bool = True) -> None:
        self._auto_subscribe = auto_subscribe
        self._channels: dict[str, list[QueueChannel]] = {}

    def channels(self, name: str) -> list[QueueChannel]:
        return list(self._channels.get(name, []))

    async def open_channel(self, name: str) -> QueueChannel:
        channel = QueueChannel(name)
        self._channels.setdefault(name, []).append(channel)
        if self._auto_subscribe:
            channel.push_state(ChannelState.SUBSCRIBED)
        _logger.debug("Local feed channel opened: %s", name)
        return channel

    async def remove_channel(self, channel: FeedChannel) -> None:
        for name, channels in list(self._channels.items()):
            if channel in channels:
                channels.remove(channel)
                if not channels:
                    del self._channels[name]
        await channel.close()

    def publish(self, name: str, payload: dict[str, Any]) -> int:
        """Deliver *payload* to every open channel called *name*; returns the fan-out."""
        channels = self._channels.get(name, [])
        for channel in channels:
            channel.push_payload(payload)
        return len(channels)

    def set_state(self, name: str, state: ChannelState, *, error: str | None = None) -> None:
        for channel in self._channels.get(name, []):
            channel.push_state(state, error=error)

    async def close(self) -> None:
        for channels in list(self._channels.values()):
            for channel in channels:
                await channel.close()
        self._channels.clear()
