# tests/test_dispatcher.py

from __future__ import annotations

import json
from collections import Counter

import pytest

from sparkboard.core.ports import DirectoryUser, QueueMessage
from sparkboard.errors import BatchProcessingError
from sparkboard.items.item_store import ItemStore
from sparkboard.notifications.dispatcher import DispatcherOptions, NotificationDispatcher
from sparkboard.notifications.events import (
    AnnouncementEvent,
    TaskAssignedEvent,
    TaskCompletedEvent,
    TaskDeletedEvent,
    event_to_body,
)

from .fakes import NOW, FakeDeliveryChannel, FakeDirectory, make_task

FAST = DispatcherOptions(fanout_delay_seconds=0.0, frontend_url="https://board.test")


def _msg(message_id: str, body: str) -> QueueMessage:
    return QueueMessage(message_id=message_id, body=body)


def _users(n: int, *, org_id: str = "org1") -> list[DirectoryUser]:
    return [DirectoryUser(user_id=f"user{i:04d}", email=f"user{i}@example.com", org_id=org_id) for i in range(n)]


def _dispatcher(
    item_store: ItemStore,
    directory: FakeDirectory,
    channel: FakeDeliveryChannel,
    options: DispatcherOptions = FAST,
) -> NotificationDispatcher:
    return NotificationDispatcher(item_store, directory, channel, options=options)


@pytest.mark.asyncio
async def test_poison_messages_are_dropped_not_retried(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    directory = FakeDirectory([DirectoryUser(user_id="u1", email="u1@example.com")])
    d = _dispatcher(item_store, directory, channel)

    deleted = TaskDeletedEvent(user_id="u1", item_id="t1", org_id="org1", title="Old")
    messages = [
        _msg("bad-json", "{not json"),
        _msg("not-object", "[1, 2]"),
        _msg("unknown-type", json.dumps({"type": "TASK_EXPLODED", "userId": "u1"})),
        _msg("missing-fields", json.dumps({"type": "TASK_COMPLETED", "userId": "u1"})),
        _msg("good", event_to_body(deleted)),
    ]

    result = await d.handle_batch(messages)

    assert result.processed == 5
    assert result.successful == 5
    assert result.failed_ids == []
    assert [s.recipient for s in channel.sent] == ["u1@example.com"]


@pytest.mark.asyncio
async def test_unresolvable_recipient_fails_only_that_message(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    directory = FakeDirectory([DirectoryUser(user_id="u1", email="u1@example.com")])
    d = _dispatcher(item_store, directory, channel)

    ok = TaskDeletedEvent(user_id="u1", item_id="t1", org_id="org1", title="A")
    no_email = TaskDeletedEvent(user_id="ghost", item_id="t2", org_id="org1", title="B")

    with pytest.raises(BatchProcessingError) as excinfo:
        await d.handle_batch([_msg("m1", event_to_body(ok)), _msg("m2", event_to_body(no_email))])

    assert excinfo.value.failed_ids == ["m2"]
    assert len(channel.sent) == 1


@pytest.mark.asyncio
async def test_delivery_failure_is_retryable(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel(fail_for={"u1@example.com"})
    directory = FakeDirectory([DirectoryUser(user_id="u1", email="u1@example.com")])
    d = _dispatcher(item_store, directory, channel)

    event = TaskDeletedEvent(user_id="u1", item_id="t1", org_id="org1", title="A")
    result = await d.process_batch([_msg("m1", event_to_body(event))])

    assert result.failed_ids == ["m1"]
    assert result.to_dict() == {"processed": 1, "successful": 0}


@pytest.mark.asyncio
async def test_completion_notice_includes_subtask_ratio(item_store: ItemStore) -> None:
    item_store.put_item(make_task("t1", now=NOW, subtasks=(True, True, False)))
    channel = FakeDeliveryChannel()
    directory = FakeDirectory([DirectoryUser(user_id="u1", email="u1@example.com")])
    d = _dispatcher(item_store, directory, channel)

    event = TaskCompletedEvent(user_id="u1", item_id="t1", org_id="org1", title="Task t1", completed_by="alice")
    await d.handle_batch([_msg("m1", event_to_body(event))])

    (sent,) = channel.sent
    assert sent.subject == "Task Completed: Task t1"
    assert "2/3 completed" in sent.body
    assert "alice" in sent.body
    assert "https://board.test" in sent.body


@pytest.mark.asyncio
async def test_notice_for_missing_item_is_dropped(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    directory = FakeDirectory([DirectoryUser(user_id="u1", email="u1@example.com")])
    d = _dispatcher(item_store, directory, channel)

    completed = TaskCompletedEvent(user_id="u1", item_id="gone", org_id="org1", title="Gone")
    assigned = TaskAssignedEvent(user_id="u1", item_id="gone", org_id="org1", title="Gone")
    result = await d.handle_batch([_msg("m1", event_to_body(completed)), _msg("m2", event_to_body(assigned))])

    assert result.successful == 2
    assert channel.sent == []


@pytest.mark.asyncio
async def test_assignment_notice(item_store: ItemStore) -> None:
    item_store.put_item(make_task("t1", now=NOW, subtasks=(False, False)))
    channel = FakeDeliveryChannel()
    directory = FakeDirectory([DirectoryUser(user_id="u1", email="u1@example.com")])
    d = _dispatcher(item_store, directory, channel)

    event = TaskAssignedEvent(user_id="u1", item_id="t1", org_id="org1", title="Task t1", assigned_by="bob")
    await d.handle_batch([_msg("m1", event_to_body(event))])

    (sent,) = channel.sent
    assert sent.subject == "New Task Assigned: Task t1"
    assert "Subtasks (2 total)" in sent.body
    assert "bob" in sent.body


@pytest.mark.asyncio
async def test_deletion_notice_explains_the_reason(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    directory = FakeDirectory([DirectoryUser(user_id="u1", email="u1@example.com")])
    d = _dispatcher(item_store, directory, channel)

    event = TaskDeletedEvent(
        user_id="u1",
        item_id="t1",
        org_id="org1",
        title="Stale",
        deadline="2024-05-01T00:00:00.000Z",
        status="pending",
    )
    await d.handle_batch([_msg("m1", event_to_body(event))])

    (sent,) = channel.sent
    assert sent.subject == "Task Deleted: Stale"
    assert "overdue and remained incomplete" in sent.body
    assert "2024-05-01 00:00 UTC" in sent.body


@pytest.mark.asyncio
async def test_announcement_reaches_each_user_once_in_groups(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    directory = FakeDirectory(_users(125))
    d = _dispatcher(item_store, directory, channel)

    users = await d.list_org_users("org1")
    assert len(users) == 125
    stats = await d.fan_out(users, "subject", "body")
    assert stats.batches == 13
    assert stats.delivered == 125

    channel.sent.clear()
    event = AnnouncementEvent(org_id="org1", title="Hello", content="All hands", priority="urgent")
    result = await d.handle_batch([_msg("m1", event_to_body(event))])

    assert result.successful == 1
    counts = Counter(s.recipient for s in channel.sent)
    assert len(counts) == 125
    assert set(counts.values()) == {1}
    assert channel.sent[0].subject == "[URGENT] Announcement: Hello"


@pytest.mark.asyncio
async def test_announcement_is_limited_to_the_org(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    directory = FakeDirectory(
        [
            DirectoryUser(user_id="a", email="a@example.com", org_id="org1"),
            DirectoryUser(user_id="b", email="b@example.com", org_id="org2"),
            DirectoryUser(user_id="c", email=None, org_id="org1"),
        ]
    )
    d = _dispatcher(item_store, directory, channel)

    event = AnnouncementEvent(org_id="org1", title="Hi")
    await d.handle_batch([_msg("m1", event_to_body(event))])

    assert [s.recipient for s in channel.sent] == ["a@example.com"]


@pytest.mark.asyncio
async def test_announcement_recipients_are_capped(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    directory = FakeDirectory(_users(200))
    options = DispatcherOptions(fanout_delay_seconds=0.0, announcement_user_cap=70)
    d = _dispatcher(item_store, directory, channel, options)

    users = await d.list_org_users("org1")

    assert len(users) == 70
    assert directory.list_calls == 2


@pytest.mark.asyncio
async def test_failed_recipient_does_not_block_the_rest(item_store: ItemStore) -> None:
    users = _users(25)
    channel = FakeDeliveryChannel(fail_for={users[3].email or ""})
    d = _dispatcher(item_store, FakeDirectory(users), channel)

    event = AnnouncementEvent(org_id="org1", title="Hi")
    result = await d.handle_batch([_msg("m1", event_to_body(event))])

    assert result.successful == 1
    assert len(channel.sent) == 25


@pytest.mark.asyncio
async def test_directory_outage_retries_the_announcement(item_store: ItemStore) -> None:
    channel = FakeDeliveryChannel()
    d = _dispatcher(item_store, FakeDirectory(_users(5), fail_listing=True), channel)

    event = AnnouncementEvent(org_id="org1", title="Hi")
    with pytest.raises(BatchProcessingError) as excinfo:
        await d.handle_batch([_msg("m1", event_to_body(event))])

    assert excinfo.value.failed_ids == ["m1"]
    assert channel.sent == []
