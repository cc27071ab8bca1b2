"""Change feed subscriber.

Owns one channel and one dispatch task per entity kind. Change payloads are
handed to ``on_event`` (the engine's ``apply_server_event``); channel state
notifications drive the :class:`ConnectivityMonitor`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

from pylingoloop._constants import DEFAULT_FEED_NAMESPACE, channel_name
from pylingoloop._redact import redact_for_log
from pylingoloop.connectivity import ConnectivityMonitor
from pylingoloop.feed import ChannelMessage, ChannelState, FeedChannel, FeedClient
from pylingoloop.state.events import EntityKind

_logger = logging.getLogger(__name__)


class ChangeFeedSubscriber:
    """Subscribe entity kinds to a feed client and pump their channels."""

    def __init__(
        self,
        client: FeedClient,
        monitor: ConnectivityMonitor,
        on_event: Callable[[EntityKind, dict[str, Any]], None],
        *,
        namespace: str = DEFAULT_FEED_NAMESPACE,
    ) -> None:
        self._client = client
        self._monitor = monitor
        self._on_event = on_event
        self._namespace = namespace
        self._channels: dict[EntityKind, FeedChannel] = {}
        self._tasks: dict[EntityKind, asyncio.Task[None]] = {}

    @property
    def client(self) -> FeedClient:
        return self._client

    @property
    def subscribed_kinds(self) -> tuple[EntityKind, ...]:
        return tuple(self._channels)

    async def start(self, kinds: Iterable[EntityKind] = tuple(EntityKind)) -> None:
        for kind in kinds:
            await self.subscribe(kind)

    async def subscribe(self, kind: EntityKind) -> None:
        """Open the ``<namespace>:<Kind>`` channel and start its dispatch task."""
        if kind in self._channels:
            return
        name = channel_name(self._namespace, kind.value)
        try:
            channel = await self._client.open_channel(name)
        except Exception:
            _logger.warning("Failed to open change feed channel %s", name, exc_info=True)
            self._monitor.subscription_failed()
            return
        self._channels[kind] = channel
        self._tasks[kind] = asyncio.create_task(
            self._dispatch(kind, channel),
            name=f"pylingoloop-feed-{kind.value}",
        )

    async def _dispatch(self, kind: EntityKind, channel: FeedChannel) -> None:
        async for message in channel.messages():
            if message.state is not None:
                self._handle_state(message)
                continue
            if message.payload is None:
                continue
            try:
                self._on_event(kind, message.payload)
            except Exception:
                _logger.warning(
                    "Failed to apply change feed event on %s: %s",
                    channel.name,
                    redact_for_log(message.payload),
                    exc_info=True,
                )

    def _handle_state(self, message: ChannelMessage) -> None:
        state = message.state
        _logger.debug("Change feed channel %s state=%s", message.channel, state)
        if state == ChannelState.SUBSCRIBED:
            self._monitor.subscription_acknowledged()
        elif state == ChannelState.CHANNEL_ERROR:
            _logger.warning("Change feed channel %s failed: %s", message.channel, message.error)
            self._monitor.subscription_failed()
        elif state == ChannelState.TIMED_OUT:
            self._monitor.subscription_timed_out()

    async def stop(self) -> None:
        """Cancel dispatch tasks and release channels."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            try:
                await self._client.remove_channel(channel)
            except Exception:
                _logger.debug("Failed to remove change feed channel %s", channel.name, exc_info=True)
