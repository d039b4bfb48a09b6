# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from sparkboard.items.item_store import ItemStore
from sparkboard.notifications.directory_store import DirectoryStore
from sparkboard.notifications.queue_store import QueueStore


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "sparkboard.sqlite3"

@pytest.fixture()
def item_store(db_path: Path) -> ItemStore:
    """
    Real SQLite store: the conditional transitions are part of what we want to test.
    """
    return ItemStore(db_path, table_name="items_test")

@pytest.fixture()
def queue(db_path: Path) -> QueueStore:
    """
    Queue with a zero visibility timeout, so a message that is not deleted is
    visible again on the very next receive (no sleeping in tests).
    """
    return QueueStore(db_path, "notifications-test", max_receive_count=3, visibility_timeout=0.0)

@pytest.fixture()
def directory(db_path: Path) -> DirectoryStore:
    return DirectoryStore(db_path, "users-test")
