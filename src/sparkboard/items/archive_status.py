# src/sparkboard/items/archive_status.py

from __future__ import annotations

from .item_models import ArchiveStatus, ItemStatus, TaskItem


def calculate_archive_status(task: TaskItem) -> ArchiveStatus:
    """
    Terminal label for a task being archived.

    - not completed                  -> aborted
    - completed, no subtasks         -> completed
    - completed, 0 of N subtasks     -> aborted
    - completed, N of N subtasks     -> completed
    - completed, anything in between -> partial

    FORCED is never returned here: it is only written by an operator override.
    """
    if task.status != ItemStatus.COMPLETED:
        return ArchiveStatus.ABORTED

    subtasks = task.subtasks
    if not subtasks:
        return ArchiveStatus.COMPLETED

    completed_count = sum(1 for s in subtasks if s.completed)
    if completed_count == 0:
        return ArchiveStatus.ABORTED
    if completed_count == len(subtasks):
        return ArchiveStatus.COMPLETED
    return ArchiveStatus.PARTIAL
