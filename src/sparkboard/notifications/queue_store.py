# src/sparkboard/notifications/queue_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from ..core.ports import QueueMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeadLetter:
    message_id: str
    body: str
    receive_count: int
    sent_at: float
    dead_lettered_at: float


@dataclass(frozen=True, slots=True)
class QueueDepth:
    visible: int
    in_flight: int
    dead: int


class QueueStore:
    """
    SQLite message queue with visibility-timeout redelivery and a dead-letter queue.

    Semantics (at-least-once):
    - receive_messages() hides each returned message for `visibility_timeout`
      seconds and increments its receive count.
    - A message that is not deleted before the timeout becomes visible again.
    - A message that has already been received `max_receive_count` times is moved
      to the dead-letter queue ("<queue>-dlq") instead of being returned again.
    - Dead-lettered messages stay until redriven; nothing is dropped.

    Thread-safety:
    - each method opens its own SQLite connection; receive uses BEGIN IMMEDIATE so
      two consumers never receive the same message in the same visibility window.
    """

    def __init__(
        self,
        db_path: str | Path,
        queue_url: str,
        *,
        max_receive_count: int = 3,
        visibility_timeout: float = 300.0,
    ) -> None:
        if not queue_url or not queue_url.strip():
            raise ValueError("queue_url is required")
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.queue_url = queue_url.strip()
        self.dead_letter_queue_url = f"{self.queue_url}-dlq"
        self.max_receive_count = max(1, int(max_receive_count))
        self.visibility_timeout = max(0.0, float(visibility_timeout))
        self._ensure_schema()
        logger.info(
            "QueueStore ready db=%s queue=%s max_receive_count=%s",
            self._db_path,
            self.queue_url,
            self.max_receive_count,
        )

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queue_messages (
                    message_id TEXT PRIMARY KEY,
                    queue TEXT NOT NULL,
                    body TEXT NOT NULL,
                    sent_at REAL NOT NULL,
                    visible_at REAL NOT NULL,
                    receive_count INTEGER NOT NULL DEFAULT 0,
                    dead_lettered_at REAL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_queue_visible ON queue_messages(queue, visible_at, sent_at)"
            )
        finally:
            conn.close()

    # ---- producer ----

    def send_message(self, body: str, *, delay_seconds: float = 0.0) -> str:
        if body is None:
            raise ValueError("body is required")
        now = time.time()
        message_id = uuid.uuid4().hex
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO queue_messages(message_id, queue, body, sent_at, visible_at, receive_count)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (message_id, self.queue_url, body, now, now + max(0.0, float(delay_seconds))),
            )
        finally:
            conn.close()
        logger.debug("Message sent queue=%s id=%s", self.queue_url, message_id)
        return message_id

    # ---- consumer ----

    def receive_messages(
        self,
        max_messages: int = 10,
        *,
        wait_seconds: float = 0.0,
        now_ts: float | None = None,
    ) -> list[QueueMessage]:
        """
        Receive up to max_messages visible messages.

        With wait_seconds > 0 this long-polls until at least one message is
        available or the wait elapses.
        """
        deadline = time.monotonic() + max(0.0, float(wait_seconds))
        while True:
            messages = self._receive_once(max_messages, now_ts=now_ts)
            if messages or time.monotonic() >= deadline:
                return messages
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    def _receive_once(self, max_messages: int, *, now_ts: float | None) -> list[QueueMessage]:
        now = time.time() if now_ts is None else float(now_ts)
        limit = max(1, int(max_messages))
        out: list[QueueMessage] = []

        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                handled: list[str] = []
                while len(out) < limit:
                    # Exclude rows touched in this call: with a zero visibility
                    # timeout they are still "visible" at `now`.
                    exclude_sql = ""
                    if handled:
                        exclude_sql = f" AND message_id NOT IN ({','.join('?' for _ in handled)})"
                    rows = conn.execute(
                        f"""
                        SELECT message_id, body, receive_count
                        FROM queue_messages
                        WHERE queue = ? AND visible_at <= ?{exclude_sql}
                        ORDER BY sent_at ASC
                        LIMIT ?
                        """,
                        (self.queue_url, now, *handled, limit - len(out)),
                    ).fetchall()
                    if not rows:
                        break

                    for row in rows:
                        handled.append(str(row["message_id"]))
                        count = int(row["receive_count"])
                        if count >= self.max_receive_count:
                            conn.execute(
                                """
                                UPDATE queue_messages
                                SET queue = ?, visible_at = ?, dead_lettered_at = ?
                                WHERE message_id = ?
                                """,
                                (self.dead_letter_queue_url, now, now, row["message_id"]),
                            )
                            logger.warning(
                                "Message moved to dead-letter queue id=%s receive_count=%s dlq=%s",
                                row["message_id"],
                                count,
                                self.dead_letter_queue_url,
                            )
                            continue

                        conn.execute(
                            """
                            UPDATE queue_messages
                            SET receive_count = receive_count + 1, visible_at = ?
                            WHERE message_id = ?
                            """,
                            (now + self.visibility_timeout, row["message_id"]),
                        )
                        out.append(
                            QueueMessage(
                                message_id=str(row["message_id"]),
                                body=str(row["body"]),
                                receive_count=count + 1,
                            )
                        )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()
        return out

    def delete_message(self, message_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "DELETE FROM queue_messages WHERE message_id = ? AND queue = ?",
                (message_id, self.queue_url),
            )
            return cur.rowcount == 1
        finally:
            conn.close()

    def change_visibility(self, message_id: str, timeout_seconds: float) -> None:
        """Make an in-flight message visible again after timeout_seconds (0 = now)."""
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE queue_messages SET visible_at = ? WHERE message_id = ? AND queue = ?",
                (time.time() + max(0.0, float(timeout_seconds)), message_id, self.queue_url),
            )
        finally:
            conn.close()

    # ---- dead-letter inspection ----

    def list_dead_letters(self, limit: int = 100) -> list[DeadLetter]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT message_id, body, receive_count, sent_at, dead_lettered_at
                FROM queue_messages
                WHERE queue = ?
                ORDER BY dead_lettered_at ASC
                LIMIT ?
                """,
                (self.dead_letter_queue_url, int(limit)),
            ).fetchall()
        finally:
            conn.close()
        return [
            DeadLetter(
                message_id=str(r["message_id"]),
                body=str(r["body"]),
                receive_count=int(r["receive_count"]),
                sent_at=float(r["sent_at"]),
                dead_lettered_at=float(r["dead_lettered_at"] or 0.0),
            )
            for r in rows
        ]

    def redrive_dead_letters(self, limit: int | None = None) -> int:
        """Move dead-lettered messages back to the source queue with a fresh receive count."""
        now = time.time()
        sql = """
            UPDATE queue_messages
            SET queue = ?, receive_count = 0, visible_at = ?, dead_lettered_at = NULL
            WHERE message_id IN (
                SELECT message_id FROM queue_messages
                WHERE queue = ?
                ORDER BY dead_lettered_at ASC
                LIMIT ?
            )
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                sql, (self.queue_url, now, self.dead_letter_queue_url, -1 if limit is None else int(limit))
            )
            moved = cur.rowcount
        finally:
            conn.close()
        if moved:
            logger.info("Redrove %d message(s) from %s", moved, self.dead_letter_queue_url)
        return moved

    def depth(self, now_ts: float | None = None) -> QueueDepth:
        now = time.time() if now_ts is None else float(now_ts)
        conn = self._get_conn()
        try:
            row = conn.execute(
                """
                SELECT
                    SUM(CASE WHEN queue = ? AND visible_at <= ? THEN 1 ELSE 0 END) AS visible,
                    SUM(CASE WHEN queue = ? AND visible_at > ? THEN 1 ELSE 0 END) AS in_flight,
                    SUM(CASE WHEN queue = ? THEN 1 ELSE 0 END) AS dead
                FROM queue_messages
                """,
                (self.queue_url, now, self.queue_url, now, self.dead_letter_queue_url),
            ).fetchone()
        finally:
            conn.close()
        return QueueDepth(
            visible=int(row["visible"] or 0),
            in_flight=int(row["in_flight"] or 0),
            dead=int(row["dead"] or 0),
        )
