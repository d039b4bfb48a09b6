# tests/test_events.py

from __future__ import annotations

import json

import pytest

from sparkboard.core.permissions import DEFAULT_ORG_ID
from sparkboard.errors import MalformedEventError, PermanentEventError, UnknownEventTypeError
from sparkboard.notifications.events import (
    AnnouncementEvent,
    EventType,
    TaskCompletedEvent,
    TaskDeletedEvent,
    event_to_body,
    parse_event,
)


def test_wire_format_uses_camel_case_and_skips_empty_fields() -> None:
    event = TaskCompletedEvent(user_id="u1", item_id="t1", org_id="org1", title="Ship it")
    payload = json.loads(event_to_body(event))

    assert payload["type"] == "TASK_COMPLETED"
    assert payload["userId"] == "u1"
    assert payload["itemId"] == "t1"
    assert payload["orgId"] == "org1"
    assert "completedBy" not in payload
    assert "enqueuedAt" in payload


def test_parse_task_deleted() -> None:
    body = json.dumps(
        {
            "type": "TASK_DELETED",
            "userId": "u1",
            "itemId": "t1",
            "title": "Old",
            "reason": "overdue_inactive",
            "deadline": "2024-01-01T00:00:00.000Z",
            "extra": "ignored",
        }
    )
    event = parse_event(body)
    assert isinstance(event, TaskDeletedEvent)
    assert event.type is EventType.TASK_DELETED
    assert event.org_id == ""
    assert event.deadline == "2024-01-01T00:00:00.000Z"


def test_announcement_defaults_to_the_default_org() -> None:
    event = parse_event(json.dumps({"type": "ANNOUNCEMENT", "title": "Hi"}))
    assert isinstance(event, AnnouncementEvent)
    assert event.org_id == DEFAULT_ORG_ID
    assert event.priority == "normal"


@pytest.mark.parametrize(
    "body",
    [
        None,
        "",
        "{broken",
        "[]",
        json.dumps({"type": "TASK_COMPLETED", "userId": "u1", "itemId": "t1", "title": "x"}),
        json.dumps({"type": "ANNOUNCEMENT"}),
    ],
)
def test_malformed_bodies(body) -> None:
    with pytest.raises(MalformedEventError):
        parse_event(body)


def test_unknown_type_is_permanent() -> None:
    with pytest.raises(UnknownEventTypeError) as excinfo:
        parse_event(json.dumps({"type": "TASK_RENAMED"}))
    assert isinstance(excinfo.value, PermanentEventError)

    with pytest.raises(UnknownEventTypeError):
        parse_event(json.dumps({"title": "no type"}))
