"""SQLite-backed KeyedStore.

All logical tables share one physical table.  Each item is stored as
canonical JSON next to its key id and partition id.  Insertion order
within a partition is the AUTOINCREMENT ``seq`` column, so a deleted and
re-inserted key moves to the end.  Queries with ``order_by`` sort on
item attributes instead, and their start key is a position compared
directly, so it need not name a live row.

Design:
- Conditional put: plain INSERT against the ``(tbl, key_id)`` UNIQUE
  constraint.  The constraint *is* the condition; there is no
  read-then-write.
- Conditional delete and counter batches run inside ``BEGIN IMMEDIATE``.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from cidway.storage import ConditionalCheckFailed, Item, QueryPage


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ITEMS = """
CREATE TABLE IF NOT EXISTS items (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    tbl          TEXT NOT NULL,
    key_id       TEXT NOT NULL,
    partition_id TEXT NOT NULL,
    item_json    TEXT NOT NULL,
    UNIQUE (tbl, key_id)
);
"""

_CREATE_IDX_PARTITION = """
CREATE INDEX IF NOT EXISTS idx_items_partition ON items(tbl, partition_id, seq);
"""


def _canonical(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _key_id(key: Item) -> str:
    return _canonical(key)


def _partition_id(field: str, value: Any) -> str:
    return _canonical([field, value])


def _json_path(field: str) -> str:
    if not field.isidentifier():
        raise ValueError(f"cannot order by attribute {field!r}")
    return f"json_extract(item_json, '$.{field}')"


class SqliteKeyedStore:
    """KeyedStore persisted in a single SQLite database file.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(_CREATE_ITEMS)
            conn.execute(_CREATE_IDX_PARTITION)
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    def get_item(self, table: str, key: Item) -> Item | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT item_json FROM items WHERE tbl = ? AND key_id = ?",
                (table, _key_id(key)),
            ).fetchone()
        finally:
            conn.close()
        return json.loads(row[0]) if row else None

    def put_item(
        self,
        table: str,
        item: Item,
        key_fields: tuple[str, ...],
        *,
        if_not_exists: bool = False,
    ) -> None:
        key = {f: item[f] for f in key_fields}
        params = (
            table,
            _key_id(key),
            _partition_id(key_fields[0], item[key_fields[0]]),
            _canonical(item),
        )
        with self._transaction() as conn:
            if if_not_exists:
                try:
                    conn.execute(
                        "INSERT INTO items (tbl, key_id, partition_id, item_json) "
                        "VALUES (?, ?, ?, ?)",
                        params,
                    )
                except sqlite3.IntegrityError as exc:
                    raise ConditionalCheckFailed(
                        f"item {params[1]} already exists in {table}"
                    ) from exc
            else:
                conn.execute(
                    "INSERT INTO items (tbl, key_id, partition_id, item_json) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT (tbl, key_id) DO UPDATE SET item_json = excluded.item_json",
                    params,
                )

    def delete_item(
        self, table: str, key: Item, *, if_exists: bool = False
    ) -> Item | None:
        kid = _key_id(key)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT seq, item_json FROM items WHERE tbl = ? AND key_id = ?",
                (table, kid),
            ).fetchone()
            if row is None:
                if if_exists:
                    raise ConditionalCheckFailed(f"item {kid} not in {table}")
                return None
            conn.execute("DELETE FROM items WHERE seq = ?", (row[0],))
        return json.loads(row[1])

    # ------------------------------------------------------------------
    # Partition queries
    # ------------------------------------------------------------------

    def query(
        self,
        table: str,
        partition: tuple[str, Any],
        *,
        limit: int,
        exclusive_start_key: Item | None = None,
        scan_forward: bool = True,
        order_by: tuple[str, ...] = (),
    ) -> QueryPage:
        field, value = partition
        direction = "ASC" if scan_forward else "DESC"
        op = ">" if scan_forward else "<"
        if order_by:
            columns = [_json_path(f) for f in order_by]
        else:
            columns = ["seq"]
        position = f"({', '.join(columns)})"
        sql = (
            "SELECT key_id, item_json FROM items "
            "WHERE tbl = ? AND partition_id = ?"
        )
        params: list[Any] = [table, _partition_id(field, value)]
        conn = self._connect()
        try:
            if exclusive_start_key is not None:
                if order_by:
                    start = [exclusive_start_key[f] for f in order_by]
                else:
                    row = conn.execute(
                        "SELECT seq FROM items WHERE tbl = ? AND key_id = ?",
                        (table, _key_id(exclusive_start_key)),
                    ).fetchone()
                    if row is None:
                        return QueryPage()
                    start = [row[0]]
                placeholders = ", ".join("?" for _ in start)
                sql += f" AND {position} {op} ({placeholders})"
                params.extend(start)
            sql += " ORDER BY " + ", ".join(f"{c} {direction}" for c in columns)
            # One extra row tells us whether another page exists.
            sql += " LIMIT ?"
            params.append(limit + 1)
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        page = rows[:limit]
        items = [json.loads(item_json) for _, item_json in page]
        last = None
        if page and len(rows) > limit:
            last = json.loads(page[-1][0])
            last.update({f: items[-1][f] for f in order_by})
        return QueryPage(items=items, last_evaluated_key=last)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def add(
        self,
        table: str,
        key_fields: tuple[str, ...],
        increments: list[tuple[Item, dict[str, int]]],
    ) -> None:
        with self._transaction() as conn:
            for key, deltas in increments:
                key = {f: key[f] for f in key_fields}
                kid = _key_id(key)
                row = conn.execute(
                    "SELECT item_json FROM items WHERE tbl = ? AND key_id = ?",
                    (table, kid),
                ).fetchone()
                item = json.loads(row[0]) if row else dict(key)
                for name, delta in deltas.items():
                    item[name] = int(item.get(name, 0)) + delta
                conn.execute(
                    "INSERT INTO items (tbl, key_id, partition_id, item_json) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT (tbl, key_id) DO UPDATE SET item_json = excluded.item_json",
                    (
                        table,
                        kid,
                        _partition_id(key_fields[0], key[key_fields[0]]),
                        _canonical(item),
                    ),
                )
