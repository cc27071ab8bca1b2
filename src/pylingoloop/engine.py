"""Offline-first sync engine.

:class:`SyncEngine` owns one :class:`EntityStore` per entity kind, the
durable :class:`MutationQueue` and the :class:`ConnectivityMonitor`. It
reconciles the stores against the list endpoint (``sync``), applies change
feed events as they arrive, and replays queued mutations after reconnects.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Coroutine, Mapping
from typing import Any, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from pylingoloop._constants import (
    AUDIO_CACHE_NAME,
    LATEST_RUN_FIELD,
    MUTATION_QUEUE_NAME,
    RUN_CACHE_NAME,
    USAGE_CACHE_NAME,
    cache_key,
)
from pylingoloop._mqtt import MqttFeedClient
from pylingoloop._redact import redact_for_log
from pylingoloop._transport import HttpTransport, Transport
from pylingoloop.config import LingoLoopConfig
from pylingoloop.connectivity import ConnectionStatus, ConnectivityMonitor, StatusTransition, StatusTrigger
from pylingoloop.exceptions import LingoLoopError, LingoLoopTransportError
from pylingoloop.feed import FeedClient
from pylingoloop.models.list_page import ListPage
from pylingoloop.models.mutation import PendingMutation
from pylingoloop.models.records import AudioFile, TranscriptRun, UsageLog
from pylingoloop.persistence import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore, PersistenceAdapter
from pylingoloop.queue import MutationQueue
from pylingoloop.session import Credential, SessionProvider, coerce_credential
from pylingoloop.state.events import EntityKind, FeedEvent
from pylingoloop.state.store import EntityStore
from pylingoloop.subscriber import ChangeFeedSubscriber

_logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_CACHE_NAMES: dict[EntityKind, str] = {
    EntityKind.AUDIO_FILE: AUDIO_CACHE_NAME,
    EntityKind.TRANSCRIPT_RUN: RUN_CACHE_NAME,
    EntityKind.USAGE_LOG: USAGE_CACHE_NAME,
}


class SyncEngine:
    """Local mirror of the remote audio/transcription records.

    Usage::

        async with SyncEngine(config, credential=token) as engine:
            await engine.sync()
            for audio in engine.audio_files:
                ...

    Parameters
    ----------
    config : LingoLoopConfig
        Engine configuration.
    credential : Credential or str or None
        Initial credential. Later changes go through :meth:`set_credential`.
    session_provider : SessionProvider or None
        Pull-style credential source. When set it takes precedence over the
        pushed credential.
    transport : Transport or None
        Remote API transport. Defaults to :class:`HttpTransport` over an
        aiohttp session created on :meth:`start`.
    http_session : aiohttp.ClientSession or None
        Session for the default transport. Not closed by the engine.
    storage : KeyValueStore or None
        Local store backend. Defaults to a file store under
        ``config.cache_dir``, or memory when that is unset.
    feed_client : FeedClient or None
        Change feed client. Defaults to an MQTT client when
        ``config.feed_enabled`` and a broker host are configured.
    online : bool
        Initial network state.
    on_status : callable or None
        Called with the new :class:`ConnectionStatus` whenever it changes.
    on_snapshot : callable or None
        Called with ``(kind, records)`` whenever a snapshot changes.
    """

    def __init__(
        self,
        config: LingoLoopConfig,
        *,
        credential: Credential | str | None = None,
        session_provider: SessionProvider | None = None,
        transport: Transport | None = None,
        http_session: aiohttp.ClientSession | None = None,
        storage: KeyValueStore | None = None,
        feed_client: FeedClient | None = None,
        online: bool = True,
        on_status: Callable[[ConnectionStatus], None] | None = None,
        on_snapshot: Callable[[EntityKind, list[dict[str, Any]]], None] | None = None,
    ) -> None:
        self._config = config
        self._credential = coerce_credential(credential)
        self._session_provider = session_provider
        self._transport = transport
        self._owns_transport = False
        self._http_session = http_session
        self._owns_http_session = False
        self._on_status = on_status
        self._on_snapshot = on_snapshot

        if storage is None:
            storage = FileKeyValueStore(config.cache_dir) if config.cache_dir is not None else MemoryKeyValueStore()
        self._persistence = PersistenceAdapter(storage)
        self._cache_keys = {
            kind: cache_key(config.cache_namespace, name, config.cache_version) for kind, name in _CACHE_NAMES.items()
        }
        self._stores = {kind: EntityStore(kind) for kind in EntityKind}
        self._queue = MutationQueue(
            self._persistence,
            cache_key(config.cache_namespace, MUTATION_QUEUE_NAME, config.cache_version),
        )

        self._owned_feed: MqttFeedClient | None = None
        if feed_client is None and config.feed_enabled and config.mqtt.host:
            self._owned_feed = MqttFeedClient(config.mqtt, subscribe_timeout=config.feed_subscribe_timeout)
            feed_client = self._owned_feed
        self._feed_client = feed_client
        self._subscriber: ChangeFeedSubscriber | None = None

        self._monitor = ConnectivityMonitor(feed_available=feed_client is not None, online=online)
        self._monitor.add_listener(self._on_transition)

        self._background: set[asyncio.Task[Any]] = set()
        self._started = False
        self._snapshots: dict[EntityKind, list[dict[str, Any]]] = {kind: [] for kind in EntityKind}
        self._load_caches()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SyncEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Create the default transport and subscribe the change feed."""
        if self._started:
            return
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
                self._owns_http_session = True
            self._transport = HttpTransport(self._config, self._http_session)
            self._owns_transport = True
        self._started = True
        if self._feed_client is not None:
            await self._start_subscriber(self._feed_client)

    async def close(self) -> None:
        """Cancel background work, release the feed and the owned HTTP session."""
        tasks = list(self._background)
        self._background.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self._stop_subscriber()
        if self._owned_feed is not None:
            try:
                await self._owned_feed.close()
            except Exception:
                _logger.warning("Failed to close MQTT feed client", exc_info=True)
        if self._owns_transport:
            self._transport = None
            self._owns_transport = False
        if self._owns_http_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._owns_http_session = False
        self._started = False

    async def wait_background(self) -> None:
        """Wait until background syncs and replays scheduled so far have finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _load_caches(self) -> None:
        for kind, store in self._stores.items():
            store.load(self._persistence.load_list(self._cache_keys[kind]))
        restored = self._queue.load()
        if restored:
            _logger.debug("Restored %d pending mutations", restored)
        for kind, store in self._stores.items():
            self._snapshots[kind] = store.snapshot()

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    @property
    def config(self) -> LingoLoopConfig:
        return self._config

    @property
    def status(self) -> ConnectionStatus:
        return self._monitor.status

    @property
    def connectivity(self) -> ConnectivityMonitor:
        return self._monitor

    def snapshot(self, kind: EntityKind | str) -> list[dict[str, Any]]:
        """Copy of the latest committed snapshot for *kind*."""
        entity_kind = EntityKind.parse(kind)
        if entity_kind is None:
            raise LingoLoopError(f"Unknown entity kind: {kind!r}")
        return copy.deepcopy(self._snapshots[entity_kind])

    @property
    def audio_files(self) -> list[dict[str, Any]]:
        return self.snapshot(EntityKind.AUDIO_FILE)

    @property
    def transcript_runs(self) -> list[dict[str, Any]]:
        return self.snapshot(EntityKind.TRANSCRIPT_RUN)

    @property
    def usage_logs(self) -> list[dict[str, Any]]:
        return self.snapshot(EntityKind.USAGE_LOG)

    @property
    def pending_mutations(self) -> list[PendingMutation]:
        return list(self._queue.pending)

    def audio_file(self, audio_id: str) -> AudioFile | None:
        return self._view(AudioFile, self._stores[EntityKind.AUDIO_FILE].get(audio_id))

    def transcript_run(self, run_id: str) -> TranscriptRun | None:
        return self._view(TranscriptRun, self._stores[EntityKind.TRANSCRIPT_RUN].get(run_id))

    def transcript_runs_for(self, audio_id: str) -> list[TranscriptRun]:
        """Runs of one audio file, newest first."""
        return self._views(TranscriptRun, EntityKind.TRANSCRIPT_RUN, "audioId", audio_id)

    def usage_logs_for(self, user_id: str) -> list[UsageLog]:
        return self._views(UsageLog, EntityKind.USAGE_LOG, "userId", user_id)

    def _views(self, model: type[ModelT], kind: EntityKind, field: str, value: str) -> list[ModelT]:
        views = []
        for record in self._snapshots[kind]:
            if record.get(field) != value:
                continue
            view = self._view(model, record)
            if view is not None:
                views.append(view)
        return views

    @staticmethod
    def _view(model: type[ModelT], record: Mapping[str, Any] | None) -> ModelT | None:
        if record is None:
            return None
        try:
            return model.model_validate(record)
        except ValidationError:
            _logger.warning("Record does not match %s: %s", model.__name__, redact_for_log(record))
            return None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _refresh_snapshots(self) -> None:
        """Recompute snapshots, persist every collection and notify observers."""
        for kind, store in self._stores.items():
            self._persistence.save(self._cache_keys[kind], store.values())
            snapshot = store.snapshot()
            if snapshot == self._snapshots[kind]:
                continue
            self._snapshots[kind] = snapshot
            if self._on_snapshot is not None:
                try:
                    self._on_snapshot(kind, copy.deepcopy(snapshot))
                except Exception:
                    _logger.warning("Snapshot callback failed for %s", kind, exc_info=True)

    # ------------------------------------------------------------------
    # Credentials and network
    # ------------------------------------------------------------------

    def _current_credential(self) -> Credential | None:
        if self._session_provider is not None:
            credential = self._session_provider.current_credential()
        else:
            credential = self._credential
        if credential is not None and credential.is_expired:
            _logger.debug("Credential expired; treating as missing")
            return None
        return credential

    def set_credential(self, credential: Credential | str | None) -> None:
        """Replace the pushed credential and report the change to the monitor."""
        new = coerce_credential(credential)
        if new == self._credential:
            return
        self._credential = new
        self._monitor.credential_changed()

    def network_online(self) -> None:
        self._monitor.network_online()

    def network_offline(self) -> None:
        self._monitor.network_offline()

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise LingoLoopError("Engine not started. Use 'async with SyncEngine(...)' or call start().")
        return self._transport

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _on_transition(self, transition: StatusTransition) -> None:
        if transition.changed and self._on_status is not None:
            try:
                self._on_status(transition.current)
            except Exception:
                _logger.warning("Status callback failed", exc_info=True)

        if (
            transition.changed
            and transition.trigger == StatusTrigger.NETWORK_ONLINE
            and transition.previous == ConnectionStatus.OFFLINE
        ):
            self._schedule(self.sync(), "sync")
            self._schedule(self.flush_pending_mutations(), "flush")
            return

        if transition.current != ConnectionStatus.CONNECTED or self._current_credential() is None:
            return
        if transition.changed or transition.trigger == StatusTrigger.CREDENTIAL_CHANGED:
            self._schedule(self.sync(), "sync")

    def _schedule(self, coro: Coroutine[Any, Any, None], label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            _logger.debug("No running event loop; skipping background %s", label)
            return
        task = loop.create_task(coro, name=f"pylingoloop-{label}")
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Background %s failed", task.get_name(), exc_info=exc)

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    async def _start_subscriber(self, client: FeedClient) -> None:
        self._monitor.feed_available()
        subscriber = ChangeFeedSubscriber(
            client,
            self._monitor,
            self.apply_server_event,
            namespace=self._config.feed_namespace,
        )
        self._subscriber = subscriber
        await subscriber.start()

    async def _stop_subscriber(self) -> None:
        subscriber = self._subscriber
        self._subscriber = None
        if subscriber is not None:
            await subscriber.stop()

    async def attach_feed_client(self, client: FeedClient | None) -> None:
        """Replace the change feed client, or detach it with ``None``.

        Events the old subscription already delivered are not filtered.
        """
        await self._stop_subscriber()
        if self._owned_feed is not None and self._owned_feed is not client:
            try:
                await self._owned_feed.close()
            except Exception:
                _logger.warning("Failed to close MQTT feed client", exc_info=True)
            self._owned_feed = None
        self._feed_client = client
        if client is None:
            self._monitor.feed_unavailable()
            return
        if self._started:
            await self._start_subscriber(client)
        else:
            self._monitor.feed_available()

    def apply_server_event(self, kind: EntityKind | str, payload: Any) -> bool:
        """Apply one change feed payload to the store for *kind*.

        Returns whether a store changed. Unknown kinds and malformed payloads
        are ignored.
        """
        entity_kind = EntityKind.parse(kind)
        if entity_kind is None:
            _logger.debug("Ignoring change event for unknown kind %r", kind)
            return False
        event = FeedEvent.from_payload(payload)
        if event is None:
            _logger.debug("Ignoring malformed change event: %s", redact_for_log(payload))
            return False
        store = self._stores[entity_kind]
        if event.is_delete:
            changed = store.remove_record(event.record_id)
        else:
            changed = store.merge_record(event.new)
        _logger.debug("Change event %s %s changed=%s", entity_kind, event.event_type, changed)
        if changed:
            self._refresh_snapshots()
        return changed

    # ------------------------------------------------------------------
    # Remote reconciliation
    # ------------------------------------------------------------------

    async def sync(self) -> None:
        """Reconcile the stores with the list endpoint, then replay mutations.

        Without a credential this is a no-op. A failed fetch is logged and
        leaves the stores as they were. Overlapping calls are not serialized;
        the one that resolves last determines the stored list.
        """
        credential = self._current_credential()
        if credential is None:
            return
        transport = self._require_transport()
        try:
            payload = await transport.request(
                "GET",
                self._config.list_path,
                credential=credential,
                params={"page": 1, "pageSize": self._config.page_size},
            )
        except LingoLoopTransportError as exc:
            _logger.warning("Failed to sync %s: %s", self._config.list_path, exc)
        except Exception:
            _logger.warning("Failed to sync %s", self._config.list_path, exc_info=True)
        else:
            self._apply_list_page(ListPage.from_payload(payload))
        self._refresh_snapshots()
        await self.flush_pending_mutations()

    def _apply_list_page(self, page: ListPage) -> None:
        self._stores[EntityKind.AUDIO_FILE].replace(page.items)
        runs = self._stores[EntityKind.TRANSCRIPT_RUN]
        for item in page.items:
            if not item.get("id"):
                continue
            latest_run = item.get(LATEST_RUN_FIELD)
            if isinstance(latest_run, Mapping):
                runs.merge_record(latest_run)
        _logger.debug("Synced %d audio files", len(page.items))

    # ------------------------------------------------------------------
    # Mutation queue
    # ------------------------------------------------------------------

    def register_mutation(self, mutation: PendingMutation | dict[str, Any]) -> PendingMutation:
        """Queue a local write for replay. Persisted before returning."""
        entry = self._queue.register(mutation)
        self._refresh_snapshots()
        return entry

    def clear_mutation(self, mutation_id: str) -> bool:
        removed = self._queue.clear(mutation_id)
        self._refresh_snapshots()
        return removed

    async def flush_pending_mutations(self) -> None:
        """Replay queued mutations once with the current credential."""
        if not len(self._queue):
            return
        await self._queue.flush(self._require_transport(), self._current_credential())
