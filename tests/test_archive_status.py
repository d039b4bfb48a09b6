# tests/test_archive_status.py

from __future__ import annotations

import pytest

from sparkboard.items.archive_status import calculate_archive_status
from sparkboard.items.item_models import ArchiveStatus, ItemStatus

from .fakes import NOW, make_task


@pytest.mark.parametrize(
    ("status", "subtasks", "expected"),
    [
        (ItemStatus.COMPLETED, (), ArchiveStatus.COMPLETED),
        (ItemStatus.COMPLETED, (True, True, True), ArchiveStatus.COMPLETED),
        (ItemStatus.COMPLETED, (True, False, False), ArchiveStatus.PARTIAL),
        (ItemStatus.COMPLETED, (False, False), ArchiveStatus.ABORTED),
        (ItemStatus.ACTIVE, (), ArchiveStatus.ABORTED),
        (ItemStatus.IN_PROGRESS, (True, True), ArchiveStatus.ABORTED),
        (ItemStatus.PENDING, (True,), ArchiveStatus.ABORTED),
    ],
)
def test_archive_status(status, subtasks, expected) -> None:
    task = make_task("t1", now=NOW, status=status, subtasks=subtasks)
    assert calculate_archive_status(task) is expected

def test_forced_is_never_computed() -> None:
    for status in ItemStatus:
        for subtasks in ((), (True,), (False,), (True, False)):
            task = make_task("t1", now=NOW, status=status, subtasks=subtasks)
            assert calculate_archive_status(task) is not ArchiveStatus.FORCED
