"""MQTT-backed change feed client.

paho-mqtt runs its network loop on a background thread. Every callback that
touches a channel is marshalled onto the asyncio loop with
``call_soon_threadsafe``; stores are never touched off-loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from typing import Any, cast

import paho.mqtt.client as mqtt

from pylingoloop.config import MqttSettings
from pylingoloop.exceptions import LingoLoopFeedError
from pylingoloop.feed import ChannelState, FeedChannel, QueueChannel


def topic_for_channel(prefix: str, channel_name: str) -> str:
    """Map ``public:AudioFile`` to ``<prefix>/public/AudioFile``."""
    suffix = channel_name.replace(":", "/")
    prefix = prefix.strip("/")
    return f"{prefix}/{suffix}" if prefix else suffix


def decode_feed_message(payload: bytes) -> dict[str, Any]:
    """Decode an MQTT message body into a change payload."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise LingoLoopFeedError("Feed message is not a JSON object")
    return parsed


def _reason_failed(reason_code: Any) -> bool:
    is_failure = getattr(reason_code, "is_failure", None)
    if is_failure is not None:
        return bool(is_failure)
    try:
        return int(reason_code) >= 0x80
    except (TypeError, ValueError):
        return True


class MqttFeedClient:
    """Threaded paho-mqtt client exposing feed channels on an asyncio loop."""

    def __init__(
        self,
        settings: MqttSettings,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        subscribe_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        if not settings.host:
            raise LingoLoopFeedError("MQTT feed requires a broker host")
        self._settings = settings
        self._loop = loop
        self._subscribe_timeout = subscribe_timeout
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._lock = threading.Lock()
        # topic -> channels; mid -> topic for outstanding SUBSCRIBE packets
        self._channels: dict[str, list[QueueChannel]] = {}
        self._pending_subacks: dict[int, str] = {}
        self._ack_timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def start(self) -> None:
        """Connect to the broker and start the network loop thread."""
        if self._running:
            return
        loop = self._require_loop()
        settings = self._settings
        client_id = settings.client_id or f"pylingoloop-{uuid.uuid4().hex[:12]}"
        self._logger.debug(
            "MQTT feed start requested host=%s port=%s client_id=%s",
            settings.host,
            settings.port,
            client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if _reason_failed(reason_code):
                self._logger.warning("MQTT feed connect failed: %s", reason_code)
                loop.call_soon_threadsafe(self._broadcast_state, ChannelState.CHANNEL_ERROR, str(reason_code))
                return
            self._logger.debug("MQTT feed connected reason=%s", reason_code)
            with self._lock:
                topics = list(self._channels)
            for topic in topics:
                self._send_subscribe(c, topic)

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            mid: int,
            reason_codes: Any,
            _properties: Any,
        ) -> None:
            with self._lock:
                topic = self._pending_subacks.pop(mid, None)
            if topic is None:
                return
            codes = list(reason_codes) if isinstance(reason_codes, (list, tuple)) else [reason_codes]
            if any(_reason_failed(code) for code in codes):
                detail = ",".join(str(code) for code in codes)
                self._logger.warning("MQTT feed subscription refused topic=%s reason=%s", topic, detail)
                loop.call_soon_threadsafe(self._deliver_state, topic, ChannelState.CHANNEL_ERROR, detail)
            else:
                loop.call_soon_threadsafe(self._deliver_state, topic, ChannelState.SUBSCRIBED, None)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                payload = decode_feed_message(msg.payload)
            except (ValueError, LingoLoopFeedError):
                self._logger.debug("MQTT feed payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            loop.call_soon_threadsafe(self._deliver_payload, msg.topic, payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT feed disconnected: %s", reason_code)
                loop.call_soon_threadsafe(self._broadcast_state, ChannelState.TIMED_OUT, str(reason_code))

        client.on_connect = on_connect
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(settings.host or "", settings.port, keepalive=settings.keepalive)
        except OSError as exc:
            raise LingoLoopFeedError(f"MQTT broker {settings.host}:{settings.port} unreachable: {exc}") from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT feed network loop started")

    def stop(self) -> None:
        """Stop and disconnect the MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        with self._lock:
            self._pending_subacks.clear()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT feed disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT feed network loop stopped")

    def _send_subscribe(self, client: mqtt.Client, topic: str) -> None:
        with self._lock:
            result, mid = client.subscribe(topic, qos=1)
            if result == mqtt.MQTT_ERR_SUCCESS and mid is not None:
                self._pending_subacks[mid] = topic
        if result != mqtt.MQTT_ERR_SUCCESS:
            # Not connected yet; on_connect subscribes again.
            self._logger.debug("MQTT feed subscribe deferred topic=%s rc=%s", topic, result)

    def _arm_ack_timer(self, topic: str) -> None:
        loop = self._require_loop()
        previous = self._ack_timers.pop(topic, None)
        if previous is not None:
            previous.cancel()
        if self._subscribe_timeout > 0:
            self._ack_timers[topic] = loop.call_later(self._subscribe_timeout, self._on_ack_timeout, topic)

    def _on_ack_timeout(self, topic: str) -> None:
        self._ack_timers.pop(topic, None)
        self._logger.warning("MQTT feed subscription timed out topic=%s", topic)
        self._deliver_state(topic, ChannelState.TIMED_OUT, "no SUBACK")

    # -- loop-thread delivery --------------------------------------------

    def _deliver_state(self, topic: str, state: ChannelState, error: str | None) -> None:
        timer = self._ack_timers.pop(topic, None)
        if timer is not None:
            timer.cancel()
        with self._lock:
            channels = list(self._channels.get(topic, []))
        for channel in channels:
            channel.push_state(state, error=error)

    def _broadcast_state(self, state: ChannelState, error: str | None) -> None:
        with self._lock:
            topics = list(self._channels)
        for topic in topics:
            self._deliver_state(topic, state, error)

    def _deliver_payload(self, topic: str, payload: dict[str, Any]) -> None:
        with self._lock:
            channels = list(self._channels.get(topic, []))
        for channel in channels:
            channel.push_payload(payload)

    # -- FeedClient protocol ---------------------------------------------

    async def open_channel(self, name: str) -> QueueChannel:
        loop = self._require_loop()
        if not self._running:
            await loop.run_in_executor(None, self.start)
        topic = topic_for_channel(self._settings.topic_prefix, name)
        channel = QueueChannel(name)
        with self._lock:
            first = topic not in self._channels
            self._channels.setdefault(topic, []).append(channel)
        if first and self._client is not None:
            self._arm_ack_timer(topic)
            self._send_subscribe(self._client, topic)
        self._logger.debug("MQTT feed channel opened name=%s topic=%s", name, topic)
        return channel

    async def remove_channel(self, channel: FeedChannel) -> None:
        topic = topic_for_channel(self._settings.topic_prefix, channel.name)
        with self._lock:
            channels = self._channels.get(topic, [])
            if channel in channels:
                channels.remove(channel)
            last = not channels
            if last:
                self._channels.pop(topic, None)
        if last:
            timer = self._ack_timers.pop(topic, None)
            if timer is not None:
                timer.cancel()
            if self._client is not None:
                self._client.unsubscribe(topic)
        await channel.close()

    async def close(self) -> None:
        with self._lock:
            channels = [channel for group in self._channels.values() for channel in group]
            self._channels.clear()
        for timer in self._ack_timers.values():
            timer.cancel()
        self._ack_timers.clear()
        for channel in channels:
            await channel.close()
        await self._require_loop().run_in_executor(None, self.stop)
