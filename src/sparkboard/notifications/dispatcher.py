# src/sparkboard/notifications/dispatcher.py

from __future__ import annotations

"""
Notification dispatcher.

Turns one batch of queue messages into delivered messages:
- parse each body into a typed event,
- route by event type to a handler,
- resolve recipients through the user directory,
- deliver through the delivery channel.

Failure semantics:
- malformed body / unknown type / item already gone -> permanent: logged, reported
  as successful so the queue never redelivers it
- handler returned False or raised -> retryable: reported as failed
After the whole batch, handle_batch() raises BatchProcessingError listing only the
failed message ids; the consumer deletes everything else.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..core.ports import DeliveryChannel, DirectoryUser, ItemRepo, QueueMessage, UserDirectory
from ..errors import BatchProcessingError, PermanentEventError
from .events import (
    AnnouncementEvent,
    NotificationEvent,
    TaskAssignedEvent,
    TaskCompletedEvent,
    TaskDeletedEvent,
    parse_event,
)
from .messages import (
    compose_announcement,
    compose_task_assigned,
    compose_task_completed,
    compose_task_deleted,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class DispatcherOptions:
    frontend_url: str = "https://sparkboard.example.com"
    announcement_user_cap: int = 500
    directory_page_size: int = 60
    fanout_batch_size: int = 10
    fanout_delay_seconds: float = 0.1
    delivery_timeout_seconds: float = 10.0
    directory_timeout_seconds: float = 20.0

    @classmethod
    def from_settings(cls, settings) -> DispatcherOptions:
        return cls(
            frontend_url=settings.frontend_url,
            announcement_user_cap=settings.announcement_user_cap,
            directory_page_size=settings.directory_page_size,
            fanout_batch_size=settings.fanout_batch_size,
            fanout_delay_seconds=settings.fanout_delay_seconds,
            delivery_timeout_seconds=settings.delivery_timeout_seconds,
            directory_timeout_seconds=settings.directory_timeout_seconds,
        )


@dataclass(slots=True)
class BatchResult:
    processed: int
    successful: int
    failed_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "successful": self.successful}


@dataclass(slots=True)
class FanoutStats:
    recipients: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    batches: int = 0


class NotificationDispatcher:
    def __init__(
        self,
        items: ItemRepo,
        directory: UserDirectory,
        channel: DeliveryChannel,
        *,
        options: DispatcherOptions | None = None,
    ) -> None:
        self._items = items
        self._directory = directory
        self._channel = channel
        self.options = options or DispatcherOptions()

    # ---- batch level ----

    async def process_batch(self, messages: Sequence[QueueMessage]) -> BatchResult:
        """Process every message concurrently; never raises for per-message failures."""
        outcomes = await asyncio.gather(*(self.process_message(m) for m in messages))
        failed = [m.message_id for m, ok in zip(messages, outcomes) if not ok]
        result = BatchResult(
            processed=len(messages),
            successful=len(messages) - len(failed),
            failed_ids=failed,
        )
        logger.info(
            "Batch processed processed=%d successful=%d failed=%d",
            result.processed,
            result.successful,
            len(failed),
        )
        return result

    async def handle_batch(self, messages: Sequence[QueueMessage]) -> BatchResult:
        """
        Queue-trigger entry point.

        Returns {processed, successful} when every message succeeded; otherwise
        raises BatchProcessingError carrying only the failed message ids.
        """
        result = await self.process_batch(messages)
        if result.failed_ids:
            logger.error("Some messages failed: %s", result.failed_ids)
            raise BatchProcessingError(result.failed_ids)
        return result

    # ---- message level ----

    async def process_message(self, message: QueueMessage) -> bool:
        try:
            event = parse_event(message.body)
        except PermanentEventError as exc:
            logger.warning(
                "Dropping unprocessable message id=%s receive_count=%s: %s",
                message.message_id,
                message.receive_count,
                exc,
            )
            return True

        try:
            ok = await self.handle_event(event)
        except Exception:
            logger.exception("Handler failed id=%s type=%s", message.message_id, event.type.value)
            return False

        if not ok:
            logger.warning(
                "Message will be retried id=%s type=%s receive_count=%s",
                message.message_id,
                event.type.value,
                message.receive_count,
            )
        return ok

    async def handle_event(self, event: NotificationEvent) -> bool:
        if isinstance(event, TaskCompletedEvent):
            return await self._on_task_completed(event)
        if isinstance(event, TaskAssignedEvent):
            return await self._on_task_assigned(event)
        if isinstance(event, TaskDeletedEvent):
            return await self._on_task_deleted(event)
        if isinstance(event, AnnouncementEvent):
            return await self._on_announcement(event)
        logger.warning("No handler for event %r; dropping", event)
        return True

    # ---- handlers ----

    async def _on_task_completed(self, event: TaskCompletedEvent) -> bool:
        logger.info("Processing task completion user=%s item=%s", event.user_id, event.item_id)
        email = await self._resolve_email(event.user_id)
        if not email:
            return False

        item = await asyncio.to_thread(self._items.get_item, event.org_id, event.item_id)
        if item is None:
            logger.warning("Item not found org=%s item=%s; dropping completion notice", event.org_id, event.item_id)
            return True

        subject, body = compose_task_completed(event, item, frontend_url=self.options.frontend_url)
        return await self._deliver(email, subject, body)

    async def _on_task_assigned(self, event: TaskAssignedEvent) -> bool:
        logger.info("Processing task assignment user=%s item=%s", event.user_id, event.item_id)
        email = await self._resolve_email(event.user_id)
        if not email:
            return False

        item = await asyncio.to_thread(self._items.get_item, event.org_id, event.item_id)
        if item is None:
            logger.warning("Item not found org=%s item=%s; dropping assignment notice", event.org_id, event.item_id)
            return True

        subject, body = compose_task_assigned(event, item, frontend_url=self.options.frontend_url)
        return await self._deliver(email, subject, body)

    async def _on_task_deleted(self, event: TaskDeletedEvent) -> bool:
        logger.info(
            "Processing task deletion user=%s item=%s reason=%s", event.user_id, event.item_id, event.reason
        )
        email = await self._resolve_email(event.user_id)
        if not email:
            return False

        subject, body = compose_task_deleted(event, frontend_url=self.options.frontend_url)
        return await self._deliver(email, subject, body)

    async def _on_announcement(self, event: AnnouncementEvent) -> bool:
        logger.info("Processing announcement org=%s priority=%s", event.org_id, event.priority)
        try:
            users = await self.list_org_users(event.org_id)
        except Exception:
            logger.exception("Directory listing failed org=%s", event.org_id)
            return False

        if not users:
            logger.info("No users found to notify org=%s", event.org_id)
            return True

        subject, body = compose_announcement(event, frontend_url=self.options.frontend_url)
        stats = await self.fan_out(users, subject, body)
        logger.info(
            "Announcement sent: %d delivered, %d failed, %d skipped out of %d users",
            stats.delivered,
            stats.failed,
            stats.skipped,
            stats.recipients,
        )
        return True

    # ---- recipients ----

    async def _resolve_email(self, user_id: str | None) -> str | None:
        if not user_id:
            return None
        try:
            user = await asyncio.wait_for(
                asyncio.to_thread(self._directory.get_user, user_id),
                timeout=self.options.directory_timeout_seconds,
            )
        except Exception:
            logger.exception("Error resolving user email user=%s", user_id)
            return None
        if user is None or not user.email:
            logger.error("User email not found for user=%s", user_id)
            return None
        return user.email

    async def list_org_users(self, org_id: str | None) -> list[DirectoryUser]:
        """
        Walk the directory pages for one org.

        Stops at the user cap or when the time budget runs out; both cases keep
        what was fetched so far. A failure of the first page propagates.
        """
        cap = max(1, int(self.options.announcement_user_cap))
        deadline = time.monotonic() + float(self.options.directory_timeout_seconds)
        users: list[DirectoryUser] = []
        token: str | None = None

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("Directory time budget exhausted after %d users; continuing with partial list", len(users))
                break
            try:
                page = await asyncio.wait_for(
                    asyncio.to_thread(
                        self._directory.list_users,
                        org_id,
                        page_token=token,
                        limit=self.options.directory_page_size,
                    ),
                    timeout=remaining,
                )
            except Exception:
                if not users:
                    raise
                logger.exception("Directory page failed after %d users; continuing with partial list", len(users))
                break

            users.extend(page.users)
            logger.debug("Fetched %d users, total: %d", len(page.users), len(users))

            if len(users) >= cap:
                logger.warning("Reached maximum user limit (%d), stopping pagination", cap)
                users = users[:cap]
                break

            token = page.next_token
            if not token:
                break

        return users

    # ---- delivery ----

    async def _deliver(self, recipient: str, subject: str, body: str) -> bool:
        try:
            ok = await asyncio.wait_for(
                self._channel.deliver(recipient=recipient, subject=subject, body=body),
                timeout=self.options.delivery_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Delivery timed out to=%s", recipient)
            return False
        except Exception:
            logger.exception("Error sending notification to=%s", recipient)
            return False
        return bool(ok)

    async def fan_out(self, users: Sequence[DirectoryUser], subject: str, body: str) -> FanoutStats:
        """
        Send the same message to every user, in sub-batches with a pause between them.

        Users without an email are skipped; one failing recipient never blocks the
        rest of its sub-batch.
        """
        stats = FanoutStats(recipients=len(users))
        size = max(1, int(self.options.fanout_batch_size))

        for start in range(0, len(users), size):
            batch = users[start:start + size]
            addressed = [u for u in batch if u.email]
            stats.skipped += len(batch) - len(addressed)

            results = await asyncio.gather(*(self._deliver(u.email, subject, body) for u in addressed))
            stats.delivered += sum(1 for r in results if r)
            stats.failed += sum(1 for r in results if not r)
            stats.batches += 1

            if start + size < len(users) and self.options.fanout_delay_seconds > 0:
                await asyncio.sleep(self.options.fanout_delay_seconds)

        return stats
