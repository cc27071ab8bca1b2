"""Connection status state machine.

The monitor owns the single authoritative :class:`ConnectionStatus`. Network
observers, feed channels and the session provider report triggers; the
monitor applies the transition table and notifies listeners. Side effects
such as re-syncing after a reconnect belong to the listeners, not here.

Transition table (no terminal state):

============  ===========================  ============
From          Trigger                      To
============  ===========================  ============
any but       network offline              offline
disabled
offline       network online               connecting
connecting    subscription acknowledged    connected
any but       subscription error           error
disabled
any           subscription timed out       offline
disabled      feed available               connecting
any           feed unavailable             disabled
connected     credential changed           connected
============  ===========================  ============

Triggers that match no row leave the status unchanged. A monitor without a
feed client ignores network changes and stays ``disabled``; attaching a
feed later moves it to ``connecting`` whatever the network state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

_logger = logging.getLogger(__name__)


class ConnectionStatus(StrEnum):
    DISABLED = "disabled"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    OFFLINE = "offline"
    ERROR = "error"


class StatusTrigger(StrEnum):
    NETWORK_OFFLINE = "network_offline"
    NETWORK_ONLINE = "network_online"
    SUBSCRIBED = "subscribed"
    SUBSCRIPTION_ERROR = "subscription_error"
    SUBSCRIPTION_TIMEOUT = "subscription_timeout"
    FEED_AVAILABLE = "feed_available"
    FEED_UNAVAILABLE = "feed_unavailable"
    CREDENTIAL_CHANGED = "credential_changed"


@dataclass(frozen=True, slots=True)
class StatusTransition:
    previous: ConnectionStatus
    current: ConnectionStatus
    trigger: StatusTrigger

    @property
    def changed(self) -> bool:
        return self.previous != self.current


StatusListener = Callable[[StatusTransition], None]


def next_status(current: ConnectionStatus, trigger: StatusTrigger) -> ConnectionStatus:
    """Pure transition function."""
    if trigger == StatusTrigger.NETWORK_OFFLINE:
        return current if current == ConnectionStatus.DISABLED else ConnectionStatus.OFFLINE
    if trigger == StatusTrigger.NETWORK_ONLINE:
        return ConnectionStatus.CONNECTING if current == ConnectionStatus.OFFLINE else current
    if trigger == StatusTrigger.SUBSCRIBED:
        return ConnectionStatus.CONNECTED if current == ConnectionStatus.CONNECTING else current
    if trigger == StatusTrigger.SUBSCRIPTION_ERROR:
        return current if current == ConnectionStatus.DISABLED else ConnectionStatus.ERROR
    if trigger == StatusTrigger.SUBSCRIPTION_TIMEOUT:
        return ConnectionStatus.OFFLINE
    if trigger == StatusTrigger.FEED_AVAILABLE:
        return ConnectionStatus.CONNECTING if current == ConnectionStatus.DISABLED else current
    if trigger == StatusTrigger.FEED_UNAVAILABLE:
        return ConnectionStatus.DISABLED
    return current


class ConnectivityMonitor:
    """Long-lived holder of the connection status.

    Parameters
    ----------
    feed_available : bool
        Whether a change feed client exists. Without one the machine starts
        ``disabled``.
    online : bool
        Initial network state. A feed-enabled monitor that starts offline
        begins in ``offline`` instead of ``connecting``.
    """

    def __init__(self, *, feed_available: bool, online: bool = True) -> None:
        if not feed_available:
            self._status = ConnectionStatus.DISABLED
        elif not online:
            self._status = ConnectionStatus.OFFLINE
        else:
            self._status = ConnectionStatus.CONNECTING
        self._listeners: list[StatusListener] = []

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def handle(self, trigger: StatusTrigger) -> StatusTransition:
        """Apply *trigger* and notify listeners with the resulting transition."""
        previous = self._status
        current = next_status(previous, trigger)
        self._status = current
        transition = StatusTransition(previous=previous, current=current, trigger=trigger)
        if transition.changed:
            _logger.debug("Connection status %s -> %s (%s)", previous, current, trigger)
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                _logger.warning("Connection status listener failed", exc_info=True)
        return transition

    def network_offline(self) -> StatusTransition:
        return self.handle(StatusTrigger.NETWORK_OFFLINE)

    def network_online(self) -> StatusTransition:
        return self.handle(StatusTrigger.NETWORK_ONLINE)

    def subscription_acknowledged(self) -> StatusTransition:
        return self.handle(StatusTrigger.SUBSCRIBED)

    def subscription_failed(self) -> StatusTransition:
        return self.handle(StatusTrigger.SUBSCRIPTION_ERROR)

    def subscription_timed_out(self) -> StatusTransition:
        return self.handle(StatusTrigger.SUBSCRIPTION_TIMEOUT)

    def feed_available(self) -> StatusTransition:
        return self.handle(StatusTrigger.FEED_AVAILABLE)

    def feed_unavailable(self) -> StatusTransition:
        return self.handle(StatusTrigger.FEED_UNAVAILABLE)

    def credential_changed(self) -> StatusTransition:
        return self.handle(StatusTrigger.CREDENTIAL_CHANGED)
