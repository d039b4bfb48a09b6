# tests/test_queue_store.py

from __future__ import annotations

import time
from pathlib import Path

from sparkboard.notifications.queue_store import QueueStore


def test_received_message_is_hidden_until_visibility_timeout(db_path: Path) -> None:
    q = QueueStore(db_path, "q", visibility_timeout=30.0)
    q.send_message('{"n": 1}')

    t0 = time.time() + 1.0
    first = q.receive_messages(10, now_ts=t0)
    assert len(first) == 1
    assert first[0].receive_count == 1

    assert q.receive_messages(10, now_ts=t0 + 10) == []

    again = q.receive_messages(10, now_ts=t0 + 31)
    assert [m.message_id for m in again] == [first[0].message_id]
    assert again[0].receive_count == 2


def test_deleted_message_is_not_redelivered(queue: QueueStore) -> None:
    mid = queue.send_message("hello")
    (msg,) = queue.receive_messages(10)
    assert msg.message_id == mid
    assert queue.delete_message(mid) is True
    assert queue.receive_messages(10) == []
    assert queue.delete_message(mid) is False


def test_receive_respects_batch_size_and_fifo(queue: QueueStore) -> None:
    ids = [queue.send_message(f"m{i}") for i in range(5)]
    batch = queue.receive_messages(3)
    assert len(batch) == 3
    assert {m.message_id for m in batch} <= set(ids)


def test_message_is_dead_lettered_after_max_receive_count(queue: QueueStore) -> None:
    mid = queue.send_message("poison")

    deliveries = 0
    for _ in range(10):
        got = queue.receive_messages(10)
        if not got:
            break
        deliveries += 1
        assert got[0].receive_count == deliveries

    assert deliveries == 3
    letters = queue.list_dead_letters()
    assert [d.message_id for d in letters] == [mid]
    assert letters[0].receive_count == 3
    assert letters[0].body == "poison"

    depth = queue.depth()
    assert depth.visible == 0
    assert depth.dead == 1


def test_redrive_returns_dead_letters_with_fresh_count(queue: QueueStore) -> None:
    mid = queue.send_message("again")
    while queue.receive_messages(10):
        pass
    assert len(queue.list_dead_letters()) == 1

    assert queue.redrive_dead_letters() == 1
    assert queue.list_dead_letters() == []

    (msg,) = queue.receive_messages(10)
    assert msg.message_id == mid
    assert msg.receive_count == 1


def test_change_visibility_makes_message_available_again(db_path: Path) -> None:
    q = QueueStore(db_path, "q", visibility_timeout=300.0)
    q.send_message("x")
    (msg,) = q.receive_messages(1)
    assert q.receive_messages(1) == []

    q.change_visibility(msg.message_id, 0)
    assert [m.message_id for m in q.receive_messages(1)] == [msg.message_id]


def test_queues_sharing_a_database_are_isolated(db_path: Path) -> None:
    a = QueueStore(db_path, "a", visibility_timeout=0.0)
    b = QueueStore(db_path, "b", visibility_timeout=0.0)
    a.send_message("for-a")
    assert b.receive_messages(10) == []
    assert [m.body for m in a.receive_messages(10)] == ["for-a"]
