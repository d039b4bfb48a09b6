# src/sparkboard/items/item_api.py

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from ..core.permissions import Actor, check_permission
from ..core.ports import NotificationQueue
from ..errors import ConditionalCheckFailed, ItemNotFoundError, PermissionDeniedError
from ..notifications.events import TaskCompletedEvent, event_to_body
from .archive_status import calculate_archive_status
from .item_models import ArchiveStatus, Item, ItemStatus, TaskItem, format_ts
from .item_store import ItemStore

logger = logging.getLogger(__name__)

DEFAULT_AUTO_ARCHIVE_DELAY = timedelta(hours=24)


def _load_task(store: ItemStore, org_id: str, item_id: str) -> TaskItem:
    item = store.get_item(org_id, item_id)
    if item is None:
        raise ItemNotFoundError(f"item not found org={org_id} item={item_id}")
    if not isinstance(item, TaskItem):
        raise ValueError(f"item {item_id} is not a task")
    return item


def archive_item_now(
    store: ItemStore,
    actor: Actor,
    org_id: str,
    item_id: str,
    *,
    force: bool = False,
    now: datetime | None = None,
) -> Item:
    """
    Interactive "archive now".

    Uses the same conditional transition as the scheduled sweep, so racing it can
    never double-archive: the loser gets ConditionalCheckFailed.

    force=True writes ArchiveStatus.FORCED instead of the computed status and is
    limited to moderators and admins.
    """
    task = _load_task(store, org_id, item_id)
    if not check_permission(actor, "update:task", task):
        raise PermissionDeniedError("You do not have permission to archive this task")
    if force and not (actor.is_admin or actor.is_moderator):
        raise PermissionDeniedError("Only moderators and admins can force-archive")

    status = ArchiveStatus.FORCED if force else calculate_archive_status(task)
    now_iso = format_ts(now or datetime.now(timezone.utc))
    archived = store.archive_item(org_id, item_id, archive_status=status, now_iso=now_iso)
    logger.info("Archived task org=%s item=%s status=%s by=%s", org_id, item_id, status.value, actor.user_id)
    return archived


def delete_item_as(store: ItemStore, actor: Actor, org_id: str, item_id: str) -> bool:
    """Delete a task or announcement on behalf of an actor."""
    item = store.get_item(org_id, item_id)
    if item is None:
        raise ItemNotFoundError(f"item not found org={org_id} item={item_id}")

    action = "delete:announcement" if item.type == "announcement" else "delete:task"
    if not check_permission(actor, action, item):
        raise PermissionDeniedError("You do not have permission to delete this item")

    deleted = store.delete_item(org_id, item_id)
    logger.info("Item deleted org=%s item=%s by=%s deleted=%s", org_id, item_id, actor.user_id, deleted)
    return deleted


def complete_task(
    store: ItemStore,
    queue: NotificationQueue,
    actor: Actor,
    org_id: str,
    item_id: str,
    *,
    auto_archive_delay: timedelta = DEFAULT_AUTO_ARCHIVE_DELAY,
    now: datetime | None = None,
) -> Item:
    """
    Mark a task completed, schedule its auto-archive and notify the owner.

    The completion notice is best-effort: a queue failure is logged, the write
    stands.
    """
    task = _load_task(store, org_id, item_id)
    if not check_permission(actor, "update:task", task):
        raise PermissionDeniedError("You do not have permission to update this task")
    if task.is_archived:
        raise ConditionalCheckFailed(f"task is archived org={org_id} item={item_id}")
    if any(not s.completed for s in task.subtasks):
        raise ValueError("all subtasks must be completed before the task")

    now = now or datetime.now(timezone.utc)
    now_iso = format_ts(now)
    updated = replace(
        task,
        status=ItemStatus.COMPLETED,
        completed_at=now_iso,
        updated_at=now_iso,
        auto_archive_at=format_ts(now + auto_archive_delay),
    )
    store.put_item(updated)

    if updated.owner_id:
        event = TaskCompletedEvent(
            user_id=updated.owner_id,
            item_id=item_id,
            org_id=org_id,
            title=updated.title,
            completed_by=actor.username or actor.user_id,
            enqueued_at=now_iso,
        )
        try:
            queue.send_message(event_to_body(event))
        except Exception:
            logger.exception("Failed to enqueue completion notice org=%s item=%s", org_id, item_id)
    return updated
