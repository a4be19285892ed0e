"""Usage counters: global admin totals and per-space totals.

Counters only ever grow.  Removals are tracked in their own
``*-remove-*`` counters rather than by decrementing additions.

Both updaters are stream consumers that may see a record more than once.
They fold a whole batch into one set of deltas and apply it in a single
store transaction, so a failed batch is either fully applied or not at
all.  Sizes of removals come from the receipt and a zero size (an
already-released blob) contributes nothing.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from cidway.models.metrics import StreamRecord
from cidway.storage import KeyedStore

logger = logging.getLogger(__name__)

BLOB_ALLOCATE = "blob/allocate"
BLOB_REMOVE = "blob/remove"
STORE_ADD = "store/add"
STORE_REMOVE = "store/remove"

BLOB_ADD_TOTAL = "blob/add-total"
BLOB_ADD_SIZE_TOTAL = "blob/add-size-total"
BLOB_REMOVE_TOTAL = "blob/remove-total"
BLOB_REMOVE_SIZE_TOTAL = "blob/remove-size-total"
STORE_ADD_TOTAL = "store/add-total"
STORE_ADD_SIZE_TOTAL = "store/add-size-total"
STORE_REMOVE_TOTAL = "store/remove-total"
STORE_REMOVE_SIZE_TOTAL = "store/remove-size-total"

ADMIN_KEY_FIELDS = ("name",)
SPACE_KEY_FIELDS = ("consumer", "name")


def _size(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def record_deltas(record: StreamRecord) -> list[tuple[str, dict[str, int]]]:
    """Counter deltas contributed by one record, per space.

    Returns ``(space, {counter: delta})`` pairs; unsuccessful receipts and
    workflow records contribute nothing.
    """
    ok = record.ok
    if ok is None:
        return []

    found = []
    for cap in record.capabilities:
        deltas: dict[str, int] = {}
        if cap.can == BLOB_ALLOCATE:
            size = _size(ok.get("size"))
            if size:
                deltas = {BLOB_ADD_TOTAL: 1, BLOB_ADD_SIZE_TOTAL: size}
        elif cap.can == STORE_ADD:
            size = _size(cap.nb.get("size"))
            if ok.get("status") != "done":
                deltas = {STORE_ADD_TOTAL: 1, STORE_ADD_SIZE_TOTAL: size}
        elif cap.can == BLOB_REMOVE:
            size = _size(ok.get("size"))
            if size:
                deltas = {BLOB_REMOVE_TOTAL: 1, BLOB_REMOVE_SIZE_TOTAL: size}
        elif cap.can == STORE_REMOVE:
            size = _size(ok.get("size"))
            if size:
                deltas = {STORE_REMOVE_TOTAL: 1, STORE_REMOVE_SIZE_TOTAL: size}
        if deltas:
            found.append((cap.resource, deltas))
    return found


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class MetricsTable:
    """Global counters, one item per counter name."""

    def __init__(self, store: KeyedStore, table: str = "admin-metrics") -> None:
        self._store = store
        self._table = table

    def get(self, name: str) -> int:
        item = self._store.get_item(self._table, {"name": name})
        return int(item.get("value", 0)) if item else 0

    def increment_totals(self, deltas: dict[str, int]) -> None:
        """Apply every delta in one transaction."""
        increments = [({"name": name}, {"value": delta}) for name, delta in deltas.items() if delta]
        if increments:
            self._store.add(self._table, ADMIN_KEY_FIELDS, increments)


class SpaceMetricsTable:
    """Per-space counters, keyed by ``(consumer, name)``."""

    def __init__(self, store: KeyedStore, table: str = "space-metrics") -> None:
        self._store = store
        self._table = table

    def get(self, consumer: str, name: str) -> int:
        item = self._store.get_item(self._table, {"consumer": consumer, "name": name})
        return int(item.get("value", 0)) if item else 0

    def get_allocated(self, consumer: str) -> int:
        """Total bytes stored by *consumer*; 0 for a space never seen."""
        return self.get(consumer, STORE_ADD_SIZE_TOTAL)

    def increment_totals(self, deltas: dict[str, dict[str, int]]) -> None:
        """Apply ``{consumer: {name: delta}}`` in one transaction."""
        increments = [
            ({"consumer": consumer, "name": name}, {"value": delta})
            for consumer, named in deltas.items()
            for name, delta in named.items()
            if delta
        ]
        if increments:
            self._store.add(self._table, SPACE_KEY_FIELDS, increments)


# ---------------------------------------------------------------------------
# Stream consumers
# ---------------------------------------------------------------------------


def update_admin_metrics(records: Iterable[StreamRecord], metrics: MetricsTable) -> dict[str, int]:
    """Fold *records* into global totals.  Returns the applied deltas."""
    totals: dict[str, int] = defaultdict(int)
    for record in records:
        for _space, deltas in record_deltas(record):
            for name, delta in deltas.items():
                totals[name] += delta
    metrics.increment_totals(dict(totals))
    logger.info("Updated %d admin counters", len(totals))
    return dict(totals)


def update_space_metrics(
    records: Iterable[StreamRecord], space_metrics: SpaceMetricsTable
) -> dict[str, dict[str, int]]:
    """Fold *records* into per-space totals.  Returns the applied deltas.

    Blob allocations count towards the space's ``store/add-size-total`` so
    ``get_allocated`` covers both upload protocols.
    """
    totals: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for record in records:
        for space, deltas in record_deltas(record):
            for name, delta in deltas.items():
                totals[space][name] += delta
                if name == BLOB_ADD_SIZE_TOTAL:
                    totals[space][STORE_ADD_SIZE_TOTAL] += delta
    applied = {space: dict(named) for space, named in totals.items()}
    space_metrics.increment_totals(applied)
    logger.info("Updated counters for %d spaces", len(applied))
    return applied
