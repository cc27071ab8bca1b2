"""pylingoloop - Offline-first sync engine for LingoLoop audio and transcription records."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pylingoloop")
except PackageNotFoundError:
    __version__ = "0+local"
from pylingoloop.config import LingoLoopConfig, MqttSettings
from pylingoloop.connectivity import ConnectionStatus, ConnectivityMonitor, StatusTransition, StatusTrigger
from pylingoloop.engine import SyncEngine
from pylingoloop.exceptions import (
    LingoLoopApiError,
    LingoLoopConfigError,
    LingoLoopError,
    LingoLoopFeedError,
    LingoLoopPersistenceError,
    LingoLoopTransportError,
)
from pylingoloop.feed import ChannelState, LocalFeedClient
from pylingoloop.models import AudioFile, MutationRequest, PendingMutation, TranscriptRun, UsageLog
from pylingoloop.persistence import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from pylingoloop.session import Credential, SessionProvider
from pylingoloop.state.events import EntityKind, FeedEvent, FeedEventType

__all__ = [
    "__version__",
    "AudioFile",
    "ChannelState",
    "ConnectionStatus",
    "ConnectivityMonitor",
    "Credential",
    "EntityKind",
    "FeedEvent",
    "FeedEventType",
    "FileKeyValueStore",
    "KeyValueStore",
    "LingoLoopApiError",
    "LingoLoopConfig",
    "LingoLoopConfigError",
    "LingoLoopError",
    "LingoLoopFeedError",
    "LingoLoopPersistenceError",
    "LingoLoopTransportError",
    "LocalFeedClient",
    "MemoryKeyValueStore",
    "MqttSettings",
    "MutationRequest",
    "PendingMutation",
    "SessionProvider",
    "StatusTransition",
    "StatusTrigger",
    "SyncEngine",
    "TranscriptRun",
    "UsageLog",
]
