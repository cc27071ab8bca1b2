from __future__ import annotations

import pytest

from pylingoloop.state.events import EntityKind, FeedEvent, FeedEventType


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("INSERT", FeedEventType.INSERT),
        ("update", FeedEventType.UPDATE),
        (" Delete ", FeedEventType.DELETE),
        ("TRUNCATE", FeedEventType.UNKNOWN),
        (None, FeedEventType.UNKNOWN),
    ],
)
def test_event_type_is_case_insensitive(raw: object, expected: FeedEventType) -> None:
    event = FeedEvent.from_payload({"eventType": raw, "new": {"id": "a"}})

    assert event is not None
    assert event.event_type == expected


def test_event_type_aliases() -> None:
    assert FeedEvent.from_payload({"type": "DELETE", "old": {"id": "a"}}).is_delete
    assert FeedEvent.from_payload({"event_type": "DELETE", "old": {"id": "a"}}).is_delete


def test_empty_rows_become_none() -> None:
    event = FeedEvent.from_payload({"eventType": "INSERT", "new": {"id": "a"}, "old": {}})

    assert event is not None
    assert event.old is None
    assert event.record_id == "a"


def test_delete_uses_old_row_id() -> None:
    event = FeedEvent.from_payload({"eventType": "DELETE", "new": {}, "old": {"id": "gone"}})

    assert event is not None
    assert event.record_id == "gone"


def test_non_mapping_payload_is_rejected() -> None:
    assert FeedEvent.from_payload(["INSERT"]) is None
    assert FeedEvent.from_payload(None) is None


def test_entity_kind_parse() -> None:
    assert EntityKind.parse("AudioFile") is EntityKind.AUDIO_FILE
    assert EntityKind.parse(EntityKind.USAGE_LOG) is EntityKind.USAGE_LOG
    assert EntityKind.parse("Invoice") is None
