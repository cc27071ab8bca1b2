"""Custom exception hierarchy for pylingoloop."""

from __future__ import annotations


class LingoLoopError(Exception):
    """Base exception for all pylingoloop errors."""


class LingoLoopConfigError(LingoLoopError):
    """Invalid or missing configuration."""


class LingoLoopTransportError(LingoLoopError):
    """Network-level failure (connection, timeout, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class LingoLoopApiError(LingoLoopTransportError):
    """Remote API answered with a non-success HTTP status.

    For a replayed mutation this means the server rejected it; the mutation
    stays queued for the next replay pass.
    """


class LingoLoopFeedError(LingoLoopError):
    """Change feed client failure (broker connect, channel setup)."""


class LingoLoopPersistenceError(LingoLoopError):
    """Local persistent store could not be read or written.

    Raised by key-value backends only; :class:`PersistenceAdapter` catches it
    and degrades to the in-memory state.
    """
