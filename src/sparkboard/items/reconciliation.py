# src/sparkboard/items/reconciliation.py

from __future__ import annotations

"""
Reconciliation job.

A periodic sweep over the item table that:
- auto-archives completed tasks whose autoArchiveAt has passed (Part A),
- deletes overdue tasks that were never started, notifying the owner (Part B),
- clears announcement pins whose pinnedUntil has passed (Part C).

Every transition is conditional, so overlapping runs (a slow run plus the next
trigger, or a run racing an interactive "archive now") are safe: the second
writer's condition fails and the item is skipped.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..core.ports import ItemRepo, NotificationQueue
from ..errors import ConditionalCheckFailed, ScanFailedError
from ..notifications.events import DELETION_REASON_OVERDUE, TaskDeletedEvent, event_to_body
from .archive_status import calculate_archive_status
from .item_models import (
    ENTITY_TYPE_ITEM,
    NOT_STARTED_STATUSES,
    AnnouncementItem,
    Item,
    ItemStatus,
    TaskItem,
    format_ts,
    parse_ts,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconciliationSummary:
    timestamp: str
    archived_count: int = 0
    deleted_count: int = 0
    unpinned_count: int = 0
    error_count: int = 0
    partial: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "archivedCount": self.archived_count,
            "deletedCount": self.deleted_count,
            "unpinnedCount": self.unpinned_count,
            "errorCount": self.error_count,
            "timestamp": self.timestamp,
            "partial": self.partial,
        }


# ---- candidate predicates (evaluated against raw records) ----


def _is_item(record: dict[str, Any]) -> bool:
    return record.get("entityType") == ENTITY_TYPE_ITEM


def _is_task(record: dict[str, Any]) -> bool:
    return _is_item(record) and record.get("type", "task") != "announcement"


def is_auto_archive_candidate(record: dict[str, Any], now: datetime) -> bool:
    """autoArchiveAt present and <= now, not archived yet. Status is not a gate."""
    if not _is_task(record) or record.get("archivedAt"):
        return False
    due = parse_ts(record.get("autoArchiveAt"))
    return due is not None and due <= now


def is_overdue_candidate(record: dict[str, Any], now: datetime) -> bool:
    """Never-started task whose deadline is strictly before now, not archived."""
    if not _is_task(record) or record.get("archivedAt"):
        return False
    if ItemStatus.parse(record.get("status")) not in NOT_STARTED_STATUSES:
        return False
    if record.get("hasBeenInProgress"):
        return False
    deadline = parse_ts(record.get("deadline"))
    return deadline is not None and deadline < now


def is_pin_expired(record: dict[str, Any], now: datetime) -> bool:
    if not _is_item(record) or record.get("type") != "announcement":
        return False
    if not record.get("isPinned"):
        return False
    until = parse_ts(record.get("pinnedUntil"))
    return until is not None and until <= now


# ---- job ----


class _Budget:
    def __init__(self, seconds: float | None) -> None:
        self._deadline = None if seconds is None else time.monotonic() + max(0.0, float(seconds))

    def exhausted(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline


def _sweep(
    store: ItemRepo,
    predicate: Callable[[dict[str, Any]], bool],
    on_item: Callable[[Item], None],
    *,
    label: str,
    page_size: int,
    budget: _Budget,
    summary: ReconciliationSummary,
) -> None:
    """Scan every page, calling on_item for each match; per-item errors are counted."""
    token: str | None = None
    pages = 0
    while True:
        if budget.exhausted():
            logger.warning("%s: time budget exhausted after %d page(s); reporting partial run", label, pages)
            summary.partial = True
            return
        try:
            page = store.scan_items(predicate=predicate, limit=page_size, next_token=token)
        except Exception as exc:
            raise ScanFailedError(f"{label} scan failed: {exc}") from exc
        pages += 1
        logger.debug("%s: page %d has %d candidate(s)", label, pages, len(page.items))
        if page.unreadable:
            summary.error_count += len(page.unreadable)
            logger.error("%s: skipped %d unreadable row(s) on page %d", label, len(page.unreadable), pages)

        for item in page.items:
            try:
                on_item(item)
            except Exception:
                summary.error_count += 1
                logger.exception("%s failed org=%s item=%s", label, item.org_id, item.item_id)

        token = page.next_token
        if not token:
            return


def run_reconciliation(
    store: ItemRepo,
    queue: NotificationQueue,
    *,
    now: datetime | None = None,
    page_size: int = 100,
    time_budget_seconds: float | None = None,
) -> ReconciliationSummary:
    """
    One reconciliation run.

    Raises ScanFailedError when a scan call itself fails; per-item failures are
    logged and counted in the summary instead.
    """
    now = now or datetime.now(timezone.utc)
    now_iso = format_ts(now)
    summary = ReconciliationSummary(timestamp=now_iso)
    budget = _Budget(time_budget_seconds)

    def archive(item: Item) -> None:
        if not isinstance(item, TaskItem):
            return
        status = calculate_archive_status(item)
        try:
            store.archive_item(item.org_id, item.item_id, archive_status=status, now_iso=now_iso)
        except ConditionalCheckFailed:
            logger.info("Task already archived or gone org=%s item=%s; skipping", item.org_id, item.item_id)
            return
        summary.archived_count += 1
        logger.info("Auto-archived task org=%s item=%s status=%s", item.org_id, item.item_id, status.value)

    def delete_overdue(item: Item) -> None:
        if not isinstance(item, TaskItem):
            return
        if not item.owner_id:
            raise ValueError("cannot resolve owner for overdue task")

        event = TaskDeletedEvent(
            user_id=item.owner_id,
            item_id=item.item_id,
            org_id=item.org_id,
            title=item.title,
            reason=DELETION_REASON_OVERDUE,
            deadline=item.deadline,
            status=item.status.value,
            deleted_at=now_iso,
            enqueued_at=now_iso,
        )
        # Enqueue first: a crash between the two steps repeats the notice on the
        # next run instead of losing it.
        queue.send_message(event_to_body(event))

        deleted = store.delete_item(
            item.org_id, item.item_id, require_unarchived=True, overdue_deadline=item.deadline
        )
        if deleted:
            summary.deleted_count += 1
            logger.info("Deleted overdue task org=%s item=%s owner=%s", item.org_id, item.item_id, item.owner_id)
        else:
            logger.info(
                "Overdue task gone, archived or started since the scan org=%s item=%s", item.org_id, item.item_id
            )

    def unpin(item: Item) -> None:
        if not isinstance(item, AnnouncementItem):
            return
        try:
            store.unpin_item(item.org_id, item.item_id, now_iso=now_iso)
        except ConditionalCheckFailed:
            return
        summary.unpinned_count += 1
        logger.info("Unpinned announcement org=%s item=%s", item.org_id, item.item_id)

    sweeps = (
        ("auto-archive", lambda r: is_auto_archive_candidate(r, now), archive),
        ("overdue-cleanup", lambda r: is_overdue_candidate(r, now), delete_overdue),
        ("pin-expiry", lambda r: is_pin_expired(r, now), unpin),
    )
    for label, predicate, action in sweeps:
        _sweep(
            store,
            predicate,
            action,
            label=label,
            page_size=page_size,
            budget=budget,
            summary=summary,
        )
        if summary.partial:
            break

    logger.info(
        "Reconciliation finished archived=%d deleted=%d unpinned=%d errors=%d partial=%s",
        summary.archived_count,
        summary.deleted_count,
        summary.unpinned_count,
        summary.error_count,
        summary.partial,
    )
    return summary


def handle_scheduled_event(
    store: ItemRepo,
    queue: NotificationQueue,
    *,
    now: datetime | None = None,
    page_size: int = 100,
    time_budget_seconds: float | None = None,
) -> dict[str, Any]:
    """
    Scheduled-trigger entry point: {statusCode, body}.

    200 with the summary, or 500 when the scan itself failed so the trigger's own
    retry/alerting can engage.
    """
    try:
        summary = run_reconciliation(
            store,
            queue,
            now=now,
            page_size=page_size,
            time_budget_seconds=time_budget_seconds,
        )
    except Exception as exc:
        logger.exception("Reconciliation run failed")
        return {
            "statusCode": 500,
            "body": json.dumps({"error": "Reconciliation failed", "message": str(exc)}),
        }
    return {"statusCode": 200, "body": json.dumps(summary.to_dict())}


async def run_reconciliation_scheduler(
        store: ItemRepo,
        queue: NotificationQueue,
        *,
        interval_seconds: float = 60.0,
        page_size: int = 100,
        time_budget_seconds: float | None = None,
) -> None:
    """
    Simple polling scheduler.

    Every interval_seconds, run one reconciliation in a worker thread. A failed
    run is logged and the loop keeps going. To stop the scheduler, cancel the
    coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    while True:
        response = await asyncio.to_thread(
            handle_scheduled_event,
            store,
            queue,
            page_size=page_size,
            time_budget_seconds=time_budget_seconds,
        )
        if response["statusCode"] != 200:
            logger.error("Reconciliation run reported failure: %s", response["body"])

        await asyncio.sleep(sleep_s)
