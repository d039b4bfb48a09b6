# src/sparkboard/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the pipeline.

The reconciliation job and the notification dispatcher depend on Protocols
instead of concrete implementations. This keeps storage, queue, directory and
delivery swappable (SQLite locally, managed services in production) and makes
testing easier.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Protocol


@dataclass(slots=True, frozen=True)
class QueueMessage:
    message_id: str
    body: str
    receive_count: int = 1


@dataclass(slots=True, frozen=True)
class DirectoryUser:
    user_id: str
    email: str | None
    org_id: str | None = None
    username: str | None = None


@dataclass(slots=True, frozen=True)
class DirectoryPage:
    users: list[DirectoryUser]
    next_token: str | None = None


class ItemRepo(Protocol):
    def get_item(self, org_id: str, item_id: str) -> Any | None: ...
    def scan_items(
            self,
            *,
            predicate: Any = None,
            limit: int = 100,
            next_token: str | None = None,
    ) -> Any: ...
    def archive_item(
            self,
            org_id: str,
            item_id: str,
            *,
            archive_status: Any,
            now_iso: str,
    ) -> Any: ...
    def unpin_item(self, org_id: str, item_id: str, *, now_iso: str) -> None: ...
    def delete_item(
            self,
            org_id: str,
            item_id: str,
            *,
            require_unarchived: bool = False,
            overdue_deadline: str | None = None,
    ) -> bool: ...


class NotificationQueue(Protocol):
    """Producer side: the reconciliation job only ever enqueues."""

    def send_message(self, body: str) -> str: ...


class UserDirectory(Protocol):
    """
    Recipient lookup.

    list_users pages through the directory; next_token is None on the last page.
    """

    def get_user(self, user_id: str) -> DirectoryUser | None: ...
    def list_users(
            self,
            org_id: str | None = None,
            *,
            page_token: str | None = None,
            limit: int = 60,
    ) -> DirectoryPage: ...


class DeliveryChannel(Protocol):
    """
    Outbound delivery of one message to one recipient.

    Returns True when the channel accepted the message. False (or an exception)
    is treated as a retryable failure by the dispatcher.
    """

    def deliver(self, *, recipient: str, subject: str, body: str) -> Awaitable[bool]: ...
