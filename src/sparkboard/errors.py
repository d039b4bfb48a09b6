# src/sparkboard/errors.py

from __future__ import annotations

from collections.abc import Iterable


class SparkboardError(Exception):
    """Base class for pipeline errors."""


class ConditionalCheckFailed(SparkboardError):
    """A conditional write found the row in an unexpected state (or missing)."""


class ScanFailedError(SparkboardError):
    """The item scan itself failed; no partial summary is meaningful."""


class PermanentEventError(SparkboardError):
    """A queue message that must never be retried."""


class MalformedEventError(PermanentEventError):
    pass


class UnknownEventTypeError(PermanentEventError):
    pass


class BatchProcessingError(SparkboardError):
    """
    Raised after a batch when some messages failed retryably.

    Carries only the failed message ids so the queue redelivers exactly those.
    """

    def __init__(self, failed_ids: Iterable[str]) -> None:
        self.failed_ids = list(failed_ids)
        super().__init__(f"{len(self.failed_ids)} message(s) failed processing")


class PermissionDeniedError(SparkboardError):
    pass


class ItemNotFoundError(SparkboardError):
    pass
