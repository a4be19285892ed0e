"""In-memory storage backends.

Used by the test suite and by ``object_store = "memory"`` deployments.
Both classes satisfy the same Protocols as the persistent backends and
honour the same atomicity contracts, guarded by a single lock.
"""

from __future__ import annotations

import copy
import json
import threading
import time
from typing import Any

from cidway.storage import (
    ConditionalCheckFailed,
    Item,
    ObjectNotFound,
    QueryPage,
)


def _key_id(key: Item) -> str:
    return json.dumps(key, sort_keys=True, separators=(",", ":"))


class MemoryObjectStore:
    """Dict-backed ObjectStore.

    Signed URLs are ``memory://{bucket}/{key}?expires=...``; they carry no
    signature because nothing ever serves them.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, bytes]] = {}
        self._lock = threading.Lock()

    def put(self, bucket: str, key: str, body: bytes = b"") -> None:
        with self._lock:
            self._buckets.setdefault(bucket, {})[key] = bytes(body)

    def get(self, bucket: str, key: str) -> bytes:
        with self._lock:
            try:
                return self._buckets[bucket][key]
            except KeyError:
                raise ObjectNotFound(bucket, key) from None

    def list(self, bucket: str, prefix: str) -> list[str]:
        with self._lock:
            keys = self._buckets.get(bucket, {})
            return sorted(k for k in keys if k.startswith(prefix))

    def signed_url(self, bucket: str, key: str, expires_in: int) -> str | None:
        with self._lock:
            if key not in self._buckets.get(bucket, {}):
                return None
        expires = int(time.time()) + expires_in
        return f"memory://{bucket}/{key}?expires={expires}"

    def keys(self, bucket: str) -> list[str]:
        """Return every key in *bucket* (test helper)."""
        return self.list(bucket, "")


class MemoryKeyedStore:
    """Dict-backed KeyedStore with insertion-ordered partitions."""

    def __init__(self) -> None:
        # table -> key_id -> (seq, item)
        self._tables: dict[str, dict[str, tuple[int, Item]]] = {}
        self._seq = 0
        self._lock = threading.Lock()

    def _table(self, table: str) -> dict[str, tuple[int, Item]]:
        return self._tables.setdefault(table, {})

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def get_item(self, table: str, key: Item) -> Item | None:
        with self._lock:
            entry = self._table(table).get(_key_id(key))
            return copy.deepcopy(entry[1]) if entry else None

    def put_item(
        self,
        table: str,
        item: Item,
        key_fields: tuple[str, ...],
        *,
        if_not_exists: bool = False,
    ) -> None:
        kid = _key_id({f: item[f] for f in key_fields})
        with self._lock:
            rows = self._table(table)
            existing = rows.get(kid)
            if existing is not None and if_not_exists:
                raise ConditionalCheckFailed(f"item {kid} already exists in {table}")
            seq = existing[0] if existing else self._next_seq()
            rows[kid] = (seq, copy.deepcopy(item))

    def delete_item(
        self, table: str, key: Item, *, if_exists: bool = False
    ) -> Item | None:
        with self._lock:
            entry = self._table(table).pop(_key_id(key), None)
            if entry is None:
                if if_exists:
                    raise ConditionalCheckFailed(f"item {_key_id(key)} not in {table}")
                return None
            return entry[1]

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
        with self._lock:
            rows = sorted(
                (
                    (
                        tuple(item[f] for f in order_by) if order_by else (seq,),
                        kid,
                        item,
                    )
                    for kid, (seq, item) in self._table(table).items()
                    if item.get(field) == value
                ),
                key=lambda row: row[0],
                reverse=not scan_forward,
            )
            if exclusive_start_key is not None:
                if order_by:
                    start = tuple(exclusive_start_key[f] for f in order_by)
                else:
                    entry = self._table(table).get(_key_id(exclusive_start_key))
                    if entry is None:
                        return QueryPage()
                    start = (entry[0],)
                rows = [
                    row
                    for row in rows
                    if (row[0] > start if scan_forward else row[0] < start)
                ]
            page = rows[:limit]
            more = len(rows) > limit
            items = [copy.deepcopy(item) for _, _, item in page]
            last = None
            if page and more:
                last = json.loads(page[-1][1])
                last.update({f: page[-1][2][f] for f in order_by})
        return QueryPage(items=items, last_evaluated_key=last)

    def add(
        self,
        table: str,
        key_fields: tuple[str, ...],
        increments: list[tuple[Item, dict[str, int]]],
    ) -> None:
        with self._lock:
            rows = self._table(table)
            for key, deltas in increments:
                kid = _key_id({f: key[f] for f in key_fields})
                seq, item = rows.get(kid) or (self._next_seq(), dict(key))
                for name, delta in deltas.items():
                    item[name] = int(item.get(name, 0)) + delta
                rows[kid] = (seq, item)
