# tests/fakes.py

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sparkboard.core.ports import DirectoryPage, DirectoryUser
from sparkboard.items.item_models import (
    AnnouncementItem,
    ArchiveStatus,
    ItemStatus,
    Priority,
    Subtask,
    TaskItem,
    format_ts,
)
from sparkboard.items.item_store import ItemStore

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_task(
    item_id: str,
    *,
    now: datetime,
    owner_id: str | None = "u1",
    org_id: str = "org1",
    status: ItemStatus = ItemStatus.ACTIVE,
    deadline: datetime | None = None,
    subtasks: Iterable[bool] = (),
    auto_archive_at: datetime | None = None,
    archived: bool = False,
    has_been_in_progress: bool = False,
    created_offset: timedelta = timedelta(days=2),
) -> TaskItem:
    created = format_ts(now - created_offset)
    return TaskItem(
        org_id=org_id,
        item_id=item_id,
        owner_id=owner_id,
        title=f"Task {item_id}",
        content="",
        status=status,
        created_at=created,
        updated_at=created,
        deadline=format_ts(deadline) if deadline else None,
        subtasks=[Subtask(id=f"s{i}", title=f"Step {i}", completed=done) for i, done in enumerate(subtasks)],
        completed_at=created if status == ItemStatus.COMPLETED else None,
        archived_at=created if archived else None,
        archive_status=ArchiveStatus.COMPLETED if archived else None,
        auto_archive_at=format_ts(auto_archive_at) if auto_archive_at else None,
        has_been_in_progress=has_been_in_progress,
    )


def make_announcement(
    item_id: str,
    *,
    now: datetime,
    org_id: str = "org1",
    pinned_until: datetime | None = None,
) -> AnnouncementItem:
    created = format_ts(now - timedelta(days=1))
    return AnnouncementItem(
        org_id=org_id,
        item_id=item_id,
        owner_id="mod1",
        title=f"Announcement {item_id}",
        content="Hello everyone",
        status=ItemStatus.ACTIVE,
        created_at=created,
        updated_at=created,
        priority=Priority.NORMAL,
        is_pinned=pinned_until is not None,
        pinned_until=format_ts(pinned_until) if pinned_until else None,
    )


@dataclass(slots=True)
class Delivered:
    recipient: str
    subject: str
    body: str


@dataclass(slots=True)
class FakeDeliveryChannel:
    """
    Records every delivery. Recipients listed in `fail_for` get False back.
    """

    fail_for: set[str] = field(default_factory=set)
    sent: list[Delivered] = field(default_factory=list)

    async def deliver(self, *, recipient: str, subject: str, body: str) -> bool:
        self.sent.append(Delivered(recipient=recipient, subject=subject, body=body))
        return recipient not in self.fail_for


class FakeDirectory:
    """In-memory UserDirectory with the same paging contract as DirectoryStore."""

    def __init__(self, users: Iterable[DirectoryUser] = (), *, fail_listing: bool = False) -> None:
        self.users = {u.user_id: u for u in users}
        self.fail_listing = fail_listing
        self.list_calls = 0

    def get_user(self, user_id: str) -> DirectoryUser | None:
        return self.users.get(user_id)

    def list_users(
        self,
        org_id: str | None = None,
        *,
        page_token: str | None = None,
        limit: int = 60,
    ) -> DirectoryPage:
        self.list_calls += 1
        if self.fail_listing:
            raise RuntimeError("directory unavailable")
        ordered = sorted(
            (u for u in self.users.values() if org_id is None or u.org_id == org_id),
            key=lambda u: u.user_id,
        )
        if page_token:
            ordered = [u for u in ordered if u.user_id > page_token]
        page = ordered[:limit]
        next_token = page[-1].user_id if len(page) == limit and len(ordered) > limit else None
        return DirectoryPage(users=page, next_token=next_token)


class FakeQueue:
    """NotificationQueue that keeps sent bodies in a list."""

    def __init__(self) -> None:
        self.bodies: list[str] = []

    def send_message(self, body: str) -> str:
        self.bodies.append(body)
        return f"m{len(self.bodies)}"


class FlakyItemRepo:
    """
    Wraps a real ItemStore and injects failures:
    - fail_scan: every scan raises
    - fail_archive_for / fail_delete_for: those item ids raise on write
    - before_delete: called with (org_id, item_id) just before each delete
    """

    def __init__(
        self,
        store: ItemStore,
        *,
        fail_scan: bool = False,
        fail_archive_for: Iterable[str] = (),
        fail_delete_for: Iterable[str] = (),
        before_delete: Callable[[str, str], None] | None = None,
    ) -> None:
        self._store = store
        self.fail_scan = fail_scan
        self.fail_archive_for = set(fail_archive_for)
        self.fail_delete_for = set(fail_delete_for)
        self.before_delete = before_delete

    def get_item(self, org_id, item_id):
        return self._store.get_item(org_id, item_id)

    def scan_items(self, *, predicate=None, limit=100, next_token=None):
        if self.fail_scan:
            raise RuntimeError("scan throttled")
        return self._store.scan_items(predicate=predicate, limit=limit, next_token=next_token)

    def archive_item(self, org_id, item_id, *, archive_status, now_iso):
        if item_id in self.fail_archive_for:
            raise RuntimeError("write throttled")
        return self._store.archive_item(org_id, item_id, archive_status=archive_status, now_iso=now_iso)

    def unpin_item(self, org_id, item_id, *, now_iso):
        return self._store.unpin_item(org_id, item_id, now_iso=now_iso)

    def delete_item(self, org_id, item_id, *, require_unarchived=False, overdue_deadline=None):
        if item_id in self.fail_delete_for:
            raise RuntimeError("delete throttled")
        if self.before_delete is not None:
            self.before_delete(org_id, item_id)
        return self._store.delete_item(
            org_id, item_id, require_unarchived=require_unarchived, overdue_deadline=overdue_deadline
        )
