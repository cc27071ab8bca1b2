"""Durable, order-preserving queue of unconfirmed local writes."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from pylingoloop._redact import redact_for_log
from pylingoloop._transport import Transport
from pylingoloop.exceptions import LingoLoopApiError, LingoLoopTransportError
from pylingoloop.models.mutation import PendingMutation
from pylingoloop.persistence import PersistenceAdapter
from pylingoloop.session import Credential

_logger = logging.getLogger(__name__)


class MutationQueue:
    """Pending mutations, persisted after every change and replayed in order.

    Replay is not head-of-line blocking: a mutation the server keeps
    rejecting stays queued while later entries are still attempted, so they
    can land out of their original causal order relative to it.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        key: str,
    ) -> None:
        self._persistence = persistence
        self._key = key
        self._entries: list[PendingMutation] = []
        self._flushing = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def key(self) -> str:
        return self._key

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def pending(self) -> tuple[PendingMutation, ...]:
        """Current entries in insertion order (immutable models)."""
        return tuple(self._entries)

    def load(self) -> int:
        """Restore the queue from persistence, dropping entries without an id."""
        restored: list[PendingMutation] = []
        for raw in self._persistence.load_list(self._key):
            try:
                restored.append(PendingMutation.model_validate(raw))
            except ValidationError:
                _logger.warning("Dropping unreadable pending mutation %s", redact_for_log(raw))
        self._entries = restored
        return len(restored)

    def _persist(self) -> None:
        self._persistence.save(self._key, [entry.to_storage() for entry in self._entries])

    def register(self, mutation: PendingMutation | dict[str, Any]) -> PendingMutation:
        """Append *mutation* and persist the full queue."""
        entry = mutation if isinstance(mutation, PendingMutation) else PendingMutation.model_validate(mutation)
        self._entries = [*self._entries, entry]
        self._persist()
        return entry

    def clear(self, mutation_id: str) -> bool:
        """Remove every entry with *mutation_id* and persist. Returns whether any was removed."""
        remaining = [entry for entry in self._entries if entry.id != mutation_id]
        removed = len(remaining) != len(self._entries)
        self._entries = remaining
        self._persist()
        return removed

    async def flush(self, transport: Transport, credential: Credential | None) -> None:
        """Replay queued mutations once, in insertion order.

        No-op when the queue is empty, no credential is available, or another
        flush is still running. Failed entries are logged and left in place;
        successful ones are cleared.
        """
        if not self._entries or credential is None:
            return
        if self._flushing:
            _logger.debug("Mutation replay already in progress; skipping")
            return
        self._flushing = True
        try:
            # Entries registered while this pass runs wait for the next one.
            for mutation in list(self._entries):
                request = mutation.parsed_request()
                if request is None:
                    continue
                try:
                    await transport.request(
                        request.method,
                        request.path,
                        credential=credential,
                        body=request.body,
                        expect_json=False,
                    )
                except LingoLoopApiError as exc:
                    _logger.warning(
                        "Pending mutation %s rejected after reconnect (HTTP %s): %s",
                        mutation.id,
                        exc.status_code,
                        redact_for_log(mutation),
                    )
                    continue
                except LingoLoopTransportError as exc:
                    _logger.warning("Failed to replay mutation %s: %s", mutation.id, exc)
                    continue
                except Exception:
                    _logger.warning("Failed to replay mutation %s", mutation.id, exc_info=True)
                    continue
                self.clear(mutation.id)
        finally:
            self._flushing = False
