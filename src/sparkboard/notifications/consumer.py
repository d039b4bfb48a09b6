# src/sparkboard/notifications/consumer.py

from __future__ import annotations

import asyncio
import logging
import time

from ..core.ports import QueueMessage
from ..errors import BatchProcessingError
from .dispatcher import BatchResult, NotificationDispatcher
from .queue_store import QueueStore

logger = logging.getLogger(__name__)


async def collect_batch(
    queue: QueueStore,
    *,
    batch_size: int = 10,
    batch_wait_seconds: float = 5.0,
) -> list[QueueMessage]:
    """
    Receive one batch.

    Returns [] right away when the queue is empty. Once a first message arrives,
    keeps receiving until the batch is full or batch_wait_seconds have passed.
    """
    size = max(1, int(batch_size))
    batch = await asyncio.to_thread(queue.receive_messages, size)
    if not batch:
        return []

    deadline = time.monotonic() + max(0.0, float(batch_wait_seconds))
    while len(batch) < size and time.monotonic() < deadline:
        await asyncio.sleep(min(0.2, max(0.0, deadline - time.monotonic())))
        batch.extend(await asyncio.to_thread(queue.receive_messages, size - len(batch)))
    return batch


async def consume_once(
    queue: QueueStore,
    dispatcher: NotificationDispatcher,
    *,
    batch_size: int = 10,
    batch_wait_seconds: float = 5.0,
) -> BatchResult | None:
    """
    Receive and process one batch.

    Successful messages are deleted; failed ones are left in flight so the queue
    redelivers them after the visibility timeout (and dead-letters them once the
    receive count is exhausted). Returns None when there was nothing to do.
    """
    messages = await collect_batch(queue, batch_size=batch_size, batch_wait_seconds=batch_wait_seconds)
    if not messages:
        return None

    failed: set[str] = set()
    try:
        await dispatcher.handle_batch(messages)
    except BatchProcessingError as exc:
        failed = set(exc.failed_ids)

    for m in messages:
        if m.message_id in failed:
            continue
        try:
            await asyncio.to_thread(queue.delete_message, m.message_id)
        except Exception:
            # Not deleting only means a duplicate delivery later.
            logger.exception("delete_message failed id=%s", m.message_id)

    return BatchResult(
        processed=len(messages),
        successful=len(messages) - len(failed),
        failed_ids=sorted(failed),
    )


async def run_notification_consumer(
    queue: QueueStore,
    dispatcher: NotificationDispatcher,
    *,
    batch_size: int = 10,
    batch_wait_seconds: float = 5.0,
    poll_interval_seconds: float = 1.0,
) -> None:
    """
    Polling consumer loop.

    Drains batches back-to-back while messages are available, then sleeps
    poll_interval_seconds. To stop the consumer, cancel the coroutine/task.
    """
    sleep_s = max(0.05, float(poll_interval_seconds))
    logger.info("Notification consumer started queue=%s batch_size=%s", queue.queue_url, batch_size)

    while True:
        try:
            result = await consume_once(
                queue,
                dispatcher,
                batch_size=batch_size,
                batch_wait_seconds=batch_wait_seconds,
            )
        except Exception:
            logger.exception("consume_once failed")
            result = None

        if result is None:
            await asyncio.sleep(sleep_s)
