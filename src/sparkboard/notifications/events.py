# src/sparkboard/notifications/events.py

"""
Notification events: the payloads that travel on the notification queue.

Each event type is a small frozen dataclass; parse_event() turns a raw message
body into one of them and raises a PermanentEventError subclass for bodies that
can never be processed (bad JSON, unknown type, missing required fields).
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from ..core.permissions import DEFAULT_ORG_ID
from ..errors import MalformedEventError, UnknownEventTypeError
from ..items.item_models import utc_now_iso


class EventType(StrEnum):
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_DELETED = "TASK_DELETED"
    ANNOUNCEMENT = "ANNOUNCEMENT"


DELETION_REASON_OVERDUE = "overdue_inactive"

# wire name -> field name
_FIELD_NAMES = {
    "userId": "user_id",
    "itemId": "item_id",
    "orgId": "org_id",
    "enqueuedAt": "enqueued_at",
    "completedBy": "completed_by",
    "assignedBy": "assigned_by",
    "deletedAt": "deleted_at",
    "createdBy": "created_by",
}
_WIRE_NAMES = {v: k for k, v in _FIELD_NAMES.items()}


@dataclass(slots=True, frozen=True)
class TaskCompletedEvent:
    user_id: str
    item_id: str
    org_id: str
    title: str
    completed_by: str | None = None
    enqueued_at: str = field(default_factory=utc_now_iso)
    type: EventType = EventType.TASK_COMPLETED


@dataclass(slots=True, frozen=True)
class TaskAssignedEvent:
    user_id: str
    item_id: str
    org_id: str
    title: str
    assigned_by: str | None = None
    enqueued_at: str = field(default_factory=utc_now_iso)
    type: EventType = EventType.TASK_ASSIGNED


@dataclass(slots=True, frozen=True)
class TaskDeletedEvent:
    """Everything the notice needs: the item no longer exists when this is handled."""

    user_id: str
    item_id: str
    org_id: str
    title: str
    reason: str = DELETION_REASON_OVERDUE
    deadline: str | None = None
    status: str | None = None
    deleted_at: str = field(default_factory=utc_now_iso)
    enqueued_at: str = field(default_factory=utc_now_iso)
    type: EventType = EventType.TASK_DELETED


@dataclass(slots=True, frozen=True)
class AnnouncementEvent:
    org_id: str
    title: str
    content: str = ""
    priority: str = "normal"
    created_by: str | None = None
    item_id: str | None = None
    user_id: str | None = None
    enqueued_at: str = field(default_factory=utc_now_iso)
    type: EventType = EventType.ANNOUNCEMENT


NotificationEvent = TaskCompletedEvent | TaskAssignedEvent | TaskDeletedEvent | AnnouncementEvent

_EVENT_CLASSES: dict[EventType, type] = {
    EventType.TASK_COMPLETED: TaskCompletedEvent,
    EventType.TASK_ASSIGNED: TaskAssignedEvent,
    EventType.TASK_DELETED: TaskDeletedEvent,
    EventType.ANNOUNCEMENT: AnnouncementEvent,
}

_REQUIRED: dict[EventType, tuple[str, ...]] = {
    EventType.TASK_COMPLETED: ("user_id", "item_id", "org_id", "title"),
    EventType.TASK_ASSIGNED: ("user_id", "item_id", "org_id", "title"),
    EventType.TASK_DELETED: ("user_id", "item_id", "title"),
    EventType.ANNOUNCEMENT: ("title",),
}


def event_to_body(event: NotificationEvent) -> str:
    payload: dict[str, Any] = {}
    for name, value in asdict(event).items():
        if value is None:
            continue
        payload[_WIRE_NAMES.get(name, name)] = value.value if isinstance(value, StrEnum) else value
    return json.dumps(payload, ensure_ascii=False)


def parse_event(body: str | bytes | None) -> NotificationEvent:
    """Parse a queue message body into a typed event."""
    if body is None:
        raise MalformedEventError("empty message body")
    try:
        raw = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(f"message body is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise MalformedEventError("message body must be a JSON object")

    try:
        event_type = EventType(raw.get("type"))
    except ValueError:
        raise UnknownEventTypeError(f"unknown event type: {raw.get('type')!r}") from None

    cls = _EVENT_CLASSES[event_type]
    allowed = set(cls.__dataclass_fields__) - {"type"}
    kwargs: dict[str, Any] = {}
    for key, value in raw.items():
        name = _FIELD_NAMES.get(key, key)
        if name in allowed and value is not None:
            kwargs[name] = str(value) if not isinstance(value, str) else value

    # Announcements are org-wide; a missing org falls back to the default org.
    if event_type == EventType.ANNOUNCEMENT:
        kwargs.setdefault("org_id", DEFAULT_ORG_ID)
    if event_type == EventType.TASK_DELETED:
        kwargs.setdefault("org_id", "")

    missing = [f for f in _REQUIRED[event_type] if not kwargs.get(f)]
    if missing:
        raise MalformedEventError(f"{event_type.value} missing field(s): {', '.join(missing)}")

    return cls(**kwargs)
