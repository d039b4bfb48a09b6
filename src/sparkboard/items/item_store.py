# src/sparkboard/items/item_store.py

from __future__ import annotations

import base64
import contextlib
import json
import logging
import re
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ConditionalCheckFailed
from .item_models import (
    ENTITY_TYPE_ITEM,
    GLOBAL_FEED_PARTITION,
    MODELED_ATTRIBUTES,
    ArchiveStatus,
    Item,
    item_from_record,
    item_to_record,
    primary_key,
    sort_key,
    user_feed_key,
)

logger = logging.getLogger(__name__)

RecordPredicate = Callable[[dict[str, Any]], bool]

_KEY_COLUMNS = ("pk", "sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk")
_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(slots=True)
class ItemPage:
    """
    One page of a query or scan. `next_token` is None on the last page.

    `unreadable` holds the (pk, sk) keys of scan rows that could not be evaluated
    or converted to an item; they are skipped, not fatal.
    """

    items: list[Item]
    next_token: str | None
    unreadable: list[tuple[str, str]] = field(default_factory=list)

    @property
    def has_more(self) -> bool:
        return self.next_token is not None


def encode_token(key: dict[str, Any]) -> str:
    raw = json.dumps(key, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: str) -> dict[str, Any]:
    try:
        val = json.loads(base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8"))
    except Exception as exc:
        raise ValueError("Invalid pagination token") from exc
    if not isinstance(val, dict):
        raise ValueError("Invalid pagination token")
    return val


class ItemStore:
    """
    SQLite single-table item store.

    Every entity lives in one table keyed by (pk, sk). Two derived indexes back the
    feeds:
    - gsi1: USER#<userId> / ITEM#<createdAt>  (items by user, chronological)
    - gsi2: ITEM#ALL / <createdAt>            (global feed, newest first)

    Non-key attributes are stored as a JSON document in `data`; conditional writes
    are single UPDATE/DELETE statements whose WHERE clause carries the condition.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path, *, table_name: str = "sparkboard_items") -> None:
        if not _TABLE_NAME_RE.match(table_name):
            raise ValueError(f"invalid table name: {table_name!r}")
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._table = table_name
        self._ensure_schema()
        try:
            total = self.count_items()
        except Exception:
            total = -1
        logger.info("ItemStore ready db=%s table=%s total=%s", self._db_path, self._table, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        t = self._table
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {t} (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    gsi1pk TEXT,
                    gsi1sk TEXT,
                    gsi2pk TEXT,
                    gsi2sk TEXT,
                    entity_type TEXT NOT NULL,
                    data TEXT NOT NULL DEFAULT '{{}}',
                    PRIMARY KEY (pk, sk)
                )
                """
            )
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{t}_gsi1 ON {t}(gsi1pk, gsi1sk)")
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{t}_gsi2 ON {t}(gsi2pk, gsi2sk)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> dict[str, Any]:
        try:
            data = json.loads(row["data"] or "{}")
        except Exception:
            logger.warning("Corrupt item document pk=%s sk=%s", row["pk"], row["sk"])
            data = {}
        if not isinstance(data, dict):
            data = {}
        for col in _KEY_COLUMNS:
            if row[col] is not None:
                data[col] = row[col]
        data.setdefault("entityType", row["entity_type"])
        return data

    @staticmethod
    def _split_record(record: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        keys = {col: record.get(col) for col in _KEY_COLUMNS}
        attrs = {k: v for k, v in record.items() if k not in _KEY_COLUMNS}
        return keys, attrs

    # ---- writes ----

    def put_record(self, record: dict[str, Any], *, overwrite: bool = True) -> None:
        """
        Write a raw record (keys + attributes).

        With overwrite=False the write is conditional on the (pk, sk) pair not
        existing yet; an existing row raises ConditionalCheckFailed.
        """
        keys, attrs = self._split_record(record)
        if not keys["pk"] or not keys["sk"]:
            raise ValueError("record requires pk and sk")
        entity_type = str(attrs.get("entityType") or ENTITY_TYPE_ITEM)

        verb = "INSERT OR REPLACE" if overwrite else "INSERT"
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                {verb} INTO {self._table}(pk, sk, gsi1pk, gsi1sk, gsi2pk, gsi2sk, entity_type, data)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    keys["pk"],
                    keys["sk"],
                    keys["gsi1pk"],
                    keys["gsi1sk"],
                    keys["gsi2pk"],
                    keys["gsi2sk"],
                    entity_type,
                    json.dumps(attrs, ensure_ascii=False),
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            raise ConditionalCheckFailed(f"item already exists pk={keys['pk']} sk={keys['sk']}") from exc
        finally:
            conn.close()

    def put_item(self, item: Item, *, overwrite: bool = True) -> None:
        """
        Write a typed item. When replacing an existing row, attributes the model
        does not own (attachments, annotations, ...) are preserved.
        """
        record = item_to_record(item)
        if overwrite:
            existing = self.get_record(item.org_id, item.item_id)
            if existing:
                extra = {k: v for k, v in existing.items() if k not in MODELED_ATTRIBUTES}
                record = {**extra, **record}
        self.put_record(record, overwrite=overwrite)
        logger.debug("Item stored org=%s item=%s type=%s", item.org_id, item.item_id, item.type)

    def archive_item(
        self,
        org_id: str,
        item_id: str,
        *,
        archive_status: ArchiveStatus,
        now_iso: str,
    ) -> Item:
        """
        Conditionally archive a task.

        Atomically:
          SET archivedAt, archiveStatus, updatedAt  REMOVE autoArchiveAt
        only if the row exists, is a task, and has no archivedAt yet.

        Raises ConditionalCheckFailed otherwise (already archived, deleted, or not
        a task). Returns the updated item.
        """
        pk, sk = primary_key(org_id), sort_key(item_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE {self._table}
                SET data = json_remove(
                    json_set(data,
                             '$.archivedAt', ?,
                             '$.archiveStatus', ?,
                             '$.updatedAt', ?),
                    '$.autoArchiveAt')
                WHERE pk = ? AND sk = ?
                  AND entity_type = ?
                  AND COALESCE(json_extract(data, '$.type'), 'task') = 'task'
                  AND json_extract(data, '$.archivedAt') IS NULL
                """,
                (now_iso, archive_status.value, now_iso, pk, sk, ENTITY_TYPE_ITEM),
            )
            if cur.rowcount != 1:
                conn.rollback()
                raise ConditionalCheckFailed(f"archive condition failed org={org_id} item={item_id}")
            row = conn.execute(
                f"SELECT * FROM {self._table} WHERE pk = ? AND sk = ?", (pk, sk)
            ).fetchone()
            conn.commit()
        finally:
            conn.close()
        return item_from_record(self._row_to_record(row))

    def unpin_item(self, org_id: str, item_id: str, *, now_iso: str) -> None:
        """Conditionally clear the pin of an announcement (must still be pinned)."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE {self._table}
                SET data = json_remove(
                    json_set(data, '$.isPinned', json('false'), '$.updatedAt', ?),
                    '$.pinnedUntil')
                WHERE pk = ? AND sk = ?
                  AND json_extract(data, '$.isPinned') = 1
                """,
                (now_iso, primary_key(org_id), sort_key(item_id)),
            )
            conn.commit()
            if cur.rowcount != 1:
                raise ConditionalCheckFailed(f"unpin condition failed org={org_id} item={item_id}")
        finally:
            conn.close()

    def delete_item(
        self,
        org_id: str,
        item_id: str,
        *,
        require_unarchived: bool = False,
        overdue_deadline: str | None = None,
    ) -> bool:
        """
        Physically delete an item.

        Returns True if a row was removed. Deleting a missing row is a no-op
        (False). With require_unarchived=True an archived row is left untouched.

        overdue_deadline makes the delete conditional on the task still being
        never-started (status pending/active or missing, hasBeenInProgress unset)
        with the same stored deadline that was judged overdue.
        """
        sql = f"DELETE FROM {self._table} WHERE pk = ? AND sk = ?"
        params: list[Any] = [primary_key(org_id), sort_key(item_id)]
        if require_unarchived:
            sql += " AND json_extract(data, '$.archivedAt') IS NULL"
        if overdue_deadline is not None:
            sql += (
                " AND COALESCE(json_extract(data, '$.status'), '') IN ('', 'pending', 'active')"
                " AND COALESCE(json_extract(data, '$.hasBeenInProgress'), 0) IN (0, '')"
                " AND json_extract(data, '$.deadline') = ?"
            )
            params.append(overdue_deadline)

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            conn.commit()
            deleted = cur.rowcount == 1
        finally:
            conn.close()
        logger.debug("Item delete org=%s item=%s deleted=%s", org_id, item_id, deleted)
        return deleted

    # ---- reads ----

    def count_items(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()
            return int(n)
        finally:
            conn.close()

    def get_record(self, org_id: str, item_id: str) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                f"SELECT * FROM {self._table} WHERE pk = ? AND sk = ?",
                (primary_key(org_id), sort_key(item_id)),
            ).fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def get_item(self, org_id: str, item_id: str) -> Item | None:
        record = self.get_record(org_id, item_id)
        return item_from_record(record) if record else None

    def query_user_feed(
        self,
        user_id: str,
        *,
        limit: int = 20,
        next_token: str | None = None,
        newest_first: bool = False,
    ) -> ItemPage:
        """Items created by one user, chronological (or newest first)."""
        op, order = ("<", "DESC") if newest_first else (">", "ASC")
        params: list[Any] = [user_feed_key(user_id)]
        cursor_sql = ""
        if next_token:
            key = decode_token(next_token)
            cursor_sql = f" AND (gsi1sk, pk, sk) {op} (?, ?, ?)"
            params.extend([key.get("gsi1sk"), key.get("pk"), key.get("sk")])
        params.append(int(limit))

        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM {self._table}
                WHERE gsi1pk = ?{cursor_sql}
                ORDER BY gsi1sk {order}, pk {order}, sk {order}
                LIMIT ?
                """,
                params,
            ).fetchall()
        finally:
            conn.close()
        return self._page_from_rows(rows, limit, ("gsi1sk", "pk", "sk"))

    def query_global_feed(self, *, limit: int = 20, next_token: str | None = None) -> ItemPage:
        """All items, newest first."""
        if limit < 1 or limit > 100:
            raise ValueError("limit must be between 1 and 100")
        params: list[Any] = [GLOBAL_FEED_PARTITION]
        cursor_sql = ""
        if next_token:
            key = decode_token(next_token)
            cursor_sql = " AND (gsi2sk, pk, sk) < (?, ?, ?)"
            params.extend([key.get("gsi2sk"), key.get("pk"), key.get("sk")])
        params.append(int(limit))

        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM {self._table}
                WHERE gsi2pk = ?{cursor_sql}
                ORDER BY gsi2sk DESC, pk DESC, sk DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
        finally:
            conn.close()
        return self._page_from_rows(rows, limit, ("gsi2sk", "pk", "sk"))

    def scan_items(
        self,
        *,
        predicate: RecordPredicate | None = None,
        limit: int = 100,
        next_token: str | None = None,
    ) -> ItemPage:
        """
        Scan one page of the table in key order.

        `limit` bounds the rows *evaluated*, not the rows returned: the predicate
        is applied after reading, so a page may hold fewer items than `limit` (even
        none) while more pages remain. Callers must follow next_token to the end.
        """
        params: list[Any] = []
        cursor_sql = ""
        if next_token:
            key = decode_token(next_token)
            cursor_sql = "WHERE (pk, sk) > (?, ?)"
            params.extend([key.get("pk"), key.get("sk")])
        params.append(int(limit))

        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM {self._table} {cursor_sql} ORDER BY pk, sk LIMIT ?",
                params,
            ).fetchall()
        finally:
            conn.close()

        token = None
        if len(rows) >= limit and rows:
            last = rows[-1]
            token = encode_token({"pk": last["pk"], "sk": last["sk"]})

        items: list[Item] = []
        unreadable: list[tuple[str, str]] = []
        for row in rows:
            try:
                record = self._row_to_record(row)
                if predicate is not None and not predicate(record):
                    continue
                items.append(item_from_record(record))
            except Exception:
                logger.exception("Skipping unreadable row pk=%s sk=%s", row["pk"], row["sk"])
                unreadable.append((row["pk"], row["sk"]))
        return ItemPage(items=items, next_token=token, unreadable=unreadable)

    def _page_from_rows(
        self, rows: list[sqlite3.Row], limit: int, cursor_cols: tuple[str, ...]
    ) -> ItemPage:
        items = [item_from_record(self._row_to_record(r)) for r in rows]
        token = None
        if len(rows) >= limit and rows:
            last = rows[-1]
            token = encode_token({col: last[col] for col in cursor_cols})
        return ItemPage(items=items, next_token=token)

    def backfill_feed_keys(self) -> int:
        """
        Populate missing derived-index keys from item attributes.

        Older rows were written before the global feed existed; without gsi2 keys
        they never show up in the newest-first feed. Returns the number of rows
        fixed.
        """
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM {self._table}
                WHERE entity_type = ? AND (gsi2pk IS NULL OR gsi1pk IS NULL)
                """,
                (ENTITY_TYPE_ITEM,),
            ).fetchall()
        finally:
            conn.close()

        fixed = 0
        for row in rows:
            record = self._row_to_record(row)
            item = item_from_record(record)
            if not item.created_at:
                logger.warning("Skipping backfill without createdAt pk=%s sk=%s", row["pk"], row["sk"])
                continue
            merged = dict(record)
            merged.update({k: v for k, v in item_to_record(item).items() if k in _KEY_COLUMNS})
            self.put_record(merged, overwrite=True)
            fixed += 1
        if fixed:
            logger.info("Backfilled feed keys for %d item(s)", fixed)
        return fixed
