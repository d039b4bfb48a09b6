# src/sparkboard/notifications/messages.py

from __future__ import annotations

from ..items.item_models import Item, TaskItem, parse_ts
from .events import (
    DELETION_REASON_OVERDUE,
    AnnouncementEvent,
    TaskAssignedEvent,
    TaskCompletedEvent,
    TaskDeletedEvent,
)

FOOTER = "---\nSparkBoard Notification System"
NO_REPLY = "This is an automated message. Please do not reply."


def _human_ts(raw: str | None, default: str = "Not set") -> str:
    dt = parse_ts(raw)
    if dt is None:
        return default
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def _join(*blocks: str) -> str:
    return "\n\n".join(b.strip("\n") for b in blocks if b and b.strip())


def compose_task_completed(event: TaskCompletedEvent, item: Item, *, frontend_url: str) -> tuple[str, str]:
    subject = f"Task Completed: {event.title}"

    details = [
        "Task Details:",
        f"- Title: {event.title}",
        f"- Completed by: {event.completed_by or 'Unknown'}",
        f"- Completed at: {_human_ts(getattr(item, 'completed_at', None) or event.enqueued_at)}",
    ]
    subtasks_block = ""
    if isinstance(item, TaskItem):
        if item.deadline:
            details.append(f"- Original deadline: {_human_ts(item.deadline)}")
        if item.subtasks:
            done = sum(1 for s in item.subtasks if s.completed)
            lines = [f"Subtasks ({done}/{len(item.subtasks)} completed):"]
            lines += [f"  {'[x]' if s.completed else '[ ]'} {s.title}" for s in item.subtasks]
            subtasks_block = "\n".join(lines)

    body = _join(
        "Hi there,",
        f'Your task "{event.title}" has been marked as completed.',
        "\n".join(details),
        subtasks_block,
        f"View your tasks at: {frontend_url}",
        f"{FOOTER}\n{NO_REPLY}",
    )
    return subject, body


def compose_task_assigned(event: TaskAssignedEvent, item: Item, *, frontend_url: str) -> tuple[str, str]:
    subject = f"New Task Assigned: {event.title}"

    details = [
        "Task Details:",
        f"- Title: {event.title}",
        f"- Assigned by: {event.assigned_by or 'System'}",
        f"- Created at: {_human_ts(item.created_at, 'Unknown')}",
    ]
    subtasks_block = ""
    if isinstance(item, TaskItem):
        details.append(f"- Deadline: {_human_ts(item.deadline)}" if item.deadline else "- No deadline set")
        if item.subtasks:
            lines = [f"Subtasks ({len(item.subtasks)} total):"]
            lines += [f"  [ ] {s.title}" for s in item.subtasks]
            subtasks_block = "\n".join(lines)

    description = f"Description:\n{item.content}" if item.content else ""

    body = _join(
        "Hi there,",
        "A new task has been assigned to you.",
        "\n".join(details),
        description,
        subtasks_block,
        f"View and manage your tasks at: {frontend_url}",
        FOOTER,
    )
    return subject, body


def deletion_reason_text(reason: str | None) -> str:
    if reason == DELETION_REASON_OVERDUE:
        return "the task was overdue and remained incomplete"
    return "of inactivity"


def compose_task_deleted(event: TaskDeletedEvent, *, frontend_url: str) -> tuple[str, str]:
    subject = f"Task Deleted: {event.title}"
    details = "\n".join(
        [
            "Task Details:",
            f"- Title: {event.title}",
            f"- Status at deletion: {event.status or 'unknown'}",
            f"- Deadline was: {_human_ts(event.deadline)}",
            f"- Deleted at: {_human_ts(event.deleted_at, 'Unknown')}",
        ]
    )
    body = _join(
        "Hi there,",
        f'Your task "{event.title}" has been automatically deleted because '
        f"{deletion_reason_text(event.reason)}.",
        details,
        "Tip: tasks that are not started by their deadline are removed automatically "
        "to keep your workspace clean.",
        f"If you still need to work on this task, you can create a new one at: {frontend_url}",
        f"{FOOTER}\n{NO_REPLY}",
    )
    return subject, body


_PRIORITY_TAGS = {"urgent": "[URGENT] ", "high": "[HIGH] "}


def compose_announcement(event: AnnouncementEvent, *, frontend_url: str) -> tuple[str, str]:
    priority = (event.priority or "normal").lower()
    subject = f"{_PRIORITY_TAGS.get(priority, '')}Announcement: {event.title}"
    meta = "\n".join(
        [
            f"Posted by: {event.created_by or 'System'}",
            f"Priority: {priority}",
            f"Time: {_human_ts(event.enqueued_at, 'Unknown')}",
        ]
    )
    body = _join(
        "SparkBoard Announcement",
        event.content,
        f"---\n{meta}",
        f"View more at: {frontend_url}",
        FOOTER,
    )
    return subject, body
