"""Typed views of the three mirrored entity kinds."""

from __future__ import annotations

from pylingoloop.models._base import RecordModel, RecordTimestamp


class TranscriptRun(RecordModel):
    """A transcription job derived from an audio file."""

    audio_id: str | None = None
    status: str | None = None
    engine: str | None = None
    version: int | None = None
    error: str | None = None
    completed_at: RecordTimestamp = None


class AudioFile(RecordModel):
    """An uploaded audio asset, the primary entity kind.

    List responses embed the most recent :class:`TranscriptRun` under
    ``latestRun``.
    """

    filename: str | None = None
    status: str | None = None
    language: str | None = None
    duration_ms: int | None = None
    size_bytes: int | None = None
    latest_run: TranscriptRun | None = None


class UsageLog(RecordModel):
    """Per-user, per-day usage counters."""

    user_id: str | None = None
    day: str | None = None
