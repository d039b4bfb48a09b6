# src/sparkboard/notifications/directory_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
from pathlib import Path

from ..core.ports import DirectoryPage, DirectoryUser

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 60


class DirectoryStore:
    """
    SQLite user directory (recipient lookup for notifications).

    Users live in one table partitioned by `directory_id`. list_users pages in
    user_id order with an opaque token (the last user_id of the previous page);
    page size is capped at MAX_PAGE_SIZE.
    """

    def __init__(self, db_path: str | Path, directory_id: str) -> None:
        if not directory_id or not directory_id.strip():
            raise ValueError("directory_id is required")
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.directory_id = directory_id.strip()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS directory_users (
                    directory_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    org_id TEXT,
                    email TEXT,
                    username TEXT,
                    PRIMARY KEY (directory_id, user_id)
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> DirectoryUser:
        return DirectoryUser(
            user_id=str(row["user_id"]),
            email=row["email"] or None,
            org_id=row["org_id"],
            username=row["username"],
        )

    def put_user(
        self,
        user_id: str,
        *,
        email: str | None,
        org_id: str | None = None,
        username: str | None = None,
    ) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO directory_users(directory_id, user_id, org_id, email, username)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(directory_id, user_id) DO UPDATE SET
                    org_id = excluded.org_id,
                    email = excluded.email,
                    username = excluded.username
                """,
                (self.directory_id, user_id, org_id, email, username),
            )
            conn.commit()
        finally:
            conn.close()

    def get_user(self, user_id: str) -> DirectoryUser | None:
        if not user_id:
            return None
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM directory_users WHERE directory_id = ? AND user_id = ?",
                (self.directory_id, user_id),
            ).fetchone()
            return self._row_to_user(row) if row else None
        finally:
            conn.close()

    def list_users(
        self,
        org_id: str | None = None,
        *,
        page_token: str | None = None,
        limit: int = MAX_PAGE_SIZE,
    ) -> DirectoryPage:
        limit = max(1, min(MAX_PAGE_SIZE, int(limit)))
        sql = "SELECT * FROM directory_users WHERE directory_id = ?"
        params: list[object] = [self.directory_id]
        if org_id:
            sql += " AND org_id = ?"
            params.append(org_id)
        if page_token:
            sql += " AND user_id > ?"
            params.append(page_token)
        sql += " ORDER BY user_id ASC LIMIT ?"
        params.append(limit)

        conn = self._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        users = [self._row_to_user(r) for r in rows]
        next_token = users[-1].user_id if len(users) == limit else None
        return DirectoryPage(users=users, next_token=next_token)
