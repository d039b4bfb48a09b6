# src/sparkboard/items/item_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal

ENTITY_TYPE_ITEM = "ITEM"
GLOBAL_FEED_PARTITION = "ITEM#ALL"


class ItemStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> ItemStatus:
        return cls.parse(raw) or cls.ACTIVE

    @classmethod
    def parse(cls, raw: Any) -> ItemStatus | None:
        """Missing status means active; an unrecognised value gives None."""
        if raw is None or raw == "":
            return cls.ACTIVE
        try:
            return cls(raw)
        except ValueError:
            return None


# "Never started" statuses; only these are eligible for overdue deletion.
NOT_STARTED_STATUSES = frozenset({ItemStatus.PENDING, ItemStatus.ACTIVE})


class ArchiveStatus(StrEnum):
    ABORTED = "aborted"
    PARTIAL = "partial"
    COMPLETED = "completed"
    FORCED = "forced"


class Priority(StrEnum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# ---- time helpers (ISO-8601 UTC, millisecond precision, "Z" suffix) ----


def format_ts(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_ts(datetime.now(timezone.utc))


def parse_ts(raw: str | None) -> datetime | None:
    """Parse a stored timestamp; None for missing or unparseable values."""
    if not raw:
        return None
    s = str(raw).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---- keys ----


def primary_key(org_id: str) -> str:
    return f"ORG#{org_id}"


def sort_key(item_id: str) -> str:
    return f"ITEM#{item_id}"


def user_feed_key(user_id: str) -> str:
    return f"USER#{user_id}"


def user_feed_sort_key(created_at: str) -> str:
    return f"ITEM#{created_at}"


def item_id_from_sort_key(sk: str) -> str:
    return sk[len("ITEM#"):] if sk.startswith("ITEM#") else sk


def org_id_from_primary_key(pk: str) -> str:
    return pk[len("ORG#"):] if pk.startswith("ORG#") else pk


def legacy_owner_from_keys(record: dict[str, Any]) -> str | None:
    """
    Legacy compatibility: recover the owner id from composite keys.

    Records written before the explicit owner attribute existed only carry the
    owner inside the by-user feed key ("USER#<userId>"); a few very old rows used a
    "USER#<userId>" segment in the primary key itself. Best-effort only: the result
    is not authoritative. Delete this once every stored record has `ownerId`.
    """
    for key in ("gsi1pk", "GSI1PK", "pk", "PK"):
        raw = record.get(key)
        if not isinstance(raw, str):
            continue
        idx = raw.find("USER#")
        if idx < 0:
            continue
        owner = raw[idx + len("USER#"):].split("#", 1)[0].strip()
        if owner:
            return owner
    return None


# ---- item variants ----


@dataclass(slots=True)
class Subtask:
    id: str
    title: str
    completed: bool = False
    completed_at: str | None = None
    completed_by: str | None = None

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> Subtask:
        return cls(
            id=str(raw.get("id") or ""),
            title=str(raw.get("title") or ""),
            completed=bool(raw.get("completed", False)),
            completed_at=raw.get("completedAt"),
            completed_by=raw.get("completedBy"),
        )

    def to_record(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "title": self.title, "completed": self.completed}
        if self.completed_at:
            out["completedAt"] = self.completed_at
        if self.completed_by:
            out["completedBy"] = self.completed_by
        return out


@dataclass(slots=True)
class _ItemCore:
    org_id: str
    item_id: str
    owner_id: str | None
    title: str
    content: str
    status: ItemStatus
    created_at: str
    updated_at: str


@dataclass(slots=True)
class TaskItem(_ItemCore):
    type: Literal["task"] = "task"
    deadline: str | None = None
    subtasks: list[Subtask] = field(default_factory=list)
    completed_at: str | None = None
    archived_at: str | None = None
    archive_status: ArchiveStatus | None = None
    auto_archive_at: str | None = None
    has_been_in_progress: bool = False

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass(slots=True)
class AnnouncementItem(_ItemCore):
    type: Literal["announcement"] = "announcement"
    priority: Priority = Priority.NORMAL
    expires_at: str | None = None
    is_pinned: bool = False
    pinned_until: str | None = None


Item = TaskItem | AnnouncementItem


def _opt_str(raw: Any) -> str | None:
    if raw is None or raw == "":
        return None
    return str(raw)


def item_from_record(record: dict[str, Any]) -> Item:
    """
    Build the typed variant from a stored record.

    The owner comes from `ownerId` (or the older `userId`); records carrying
    neither fall back to legacy_owner_from_keys().
    """
    org_id = _opt_str(record.get("orgId")) or org_id_from_primary_key(str(record.get("pk") or ""))
    item_id = _opt_str(record.get("itemId")) or item_id_from_sort_key(str(record.get("sk") or ""))
    owner_id = _opt_str(record.get("ownerId")) or _opt_str(record.get("userId"))
    if owner_id is None:
        owner_id = legacy_owner_from_keys(record)

    core: dict[str, Any] = {
        "org_id": org_id,
        "item_id": item_id,
        "owner_id": owner_id,
        "title": str(record.get("title") or ""),
        "content": str(record.get("content") or ""),
        "status": ItemStatus.from_db(record.get("status")),
        "created_at": str(record.get("createdAt") or ""),
        "updated_at": str(record.get("updatedAt") or record.get("createdAt") or ""),
    }

    if record.get("type") == "announcement":
        try:
            priority = Priority(record.get("priority") or "normal")
        except ValueError:
            priority = Priority.NORMAL
        return AnnouncementItem(
            **core,
            priority=priority,
            expires_at=_opt_str(record.get("expiresAt")),
            is_pinned=bool(record.get("isPinned", False)),
            pinned_until=_opt_str(record.get("pinnedUntil")),
        )

    raw_subtasks = record.get("subtasks")
    if not isinstance(raw_subtasks, list):
        raw_subtasks = []
    try:
        archive_status = ArchiveStatus(record.get("archiveStatus")) if record.get("archiveStatus") else None
    except ValueError:
        archive_status = None
    return TaskItem(
        **core,
        deadline=_opt_str(record.get("deadline")),
        subtasks=[Subtask.from_record(s) for s in raw_subtasks if isinstance(s, dict)],
        completed_at=_opt_str(record.get("completedAt")),
        archived_at=_opt_str(record.get("archivedAt")),
        archive_status=archive_status,
        auto_archive_at=_opt_str(record.get("autoArchiveAt")),
        has_been_in_progress=bool(record.get("hasBeenInProgress", False)),
    )


def item_to_record(item: Item) -> dict[str, Any]:
    """Serialize an item, including its primary and derived index keys."""
    record: dict[str, Any] = {
        "pk": primary_key(item.org_id),
        "sk": sort_key(item.item_id),
        "gsi2pk": GLOBAL_FEED_PARTITION,
        "gsi2sk": item.created_at,
        "entityType": ENTITY_TYPE_ITEM,
        "type": item.type,
        "itemId": item.item_id,
        "orgId": item.org_id,
        "title": item.title,
        "content": item.content,
        "status": item.status.value,
        "createdAt": item.created_at,
        "updatedAt": item.updated_at,
    }
    if item.owner_id:
        record["ownerId"] = item.owner_id
        record["gsi1pk"] = user_feed_key(item.owner_id)
        record["gsi1sk"] = user_feed_sort_key(item.created_at)

    if isinstance(item, TaskItem):
        record["subtasks"] = [s.to_record() for s in item.subtasks]
        record["hasBeenInProgress"] = item.has_been_in_progress
        optional = {
            "deadline": item.deadline,
            "completedAt": item.completed_at,
            "archivedAt": item.archived_at,
            "archiveStatus": item.archive_status.value if item.archive_status else None,
            "autoArchiveAt": item.auto_archive_at,
        }
    else:
        record["priority"] = item.priority.value
        record["isPinned"] = item.is_pinned
        optional = {
            "expiresAt": item.expires_at,
            "pinnedUntil": item.pinned_until,
        }

    for key, value in optional.items():
        if value is not None:
            record[key] = value
    return record


# Attributes owned by the typed model; anything else on a stored record (e.g.
# attachments, annotations, username) is carried over untouched on rewrite.
MODELED_ATTRIBUTES = frozenset(
    {
        "pk", "sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk",
        "entityType", "type", "itemId", "orgId", "ownerId", "userId",
        "title", "content", "status", "createdAt", "updatedAt",
        "deadline", "subtasks", "completedAt", "archivedAt", "archiveStatus",
        "autoArchiveAt", "hasBeenInProgress",
        "priority", "expiresAt", "isPinned", "pinnedUntil",
    }
)
