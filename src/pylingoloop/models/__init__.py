"""Data models for pylingoloop."""

from pylingoloop.models._base import RecordModel, RecordTimestamp, parse_record_timestamp
from pylingoloop.models.list_page import ListPage
from pylingoloop.models.mutation import MutationRequest, PendingMutation
from pylingoloop.models.records import AudioFile, TranscriptRun, UsageLog

__all__ = [
    "AudioFile",
    "ListPage",
    "MutationRequest",
    "PendingMutation",
    "RecordModel",
    "RecordTimestamp",
    "TranscriptRun",
    "UsageLog",
    "parse_record_timestamp",
]
