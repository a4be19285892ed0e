"""Allocation ledger: at most one live allocation per (space, digest).

Storage layout (keyed store, one table):
    partition ``space``  = the space DID
    sort      ``multihash`` = base58btc multihash of the blob
    item      ``{space, multihash, size, cause, insertedAt}``
    listing   ordered by ``(insertedAt, multihash)``

Design:
- Insert is a single conditional put; a concurrent duplicate can never
  succeed twice for the same key.
- Remove is a single conditional delete; a missing record is reported as
  ``size=0`` so retried releases stay idempotent.
- No client-side check-then-act anywhere.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from cidway.core.hasher import base58btc_decode, base58btc_encode, cid_key, parse_cid
from cidway.core.results import (
    DecodeFailure,
    Err,
    Ok,
    RecordKeyConflict,
    RecordNotFound,
    Result,
    StorageOperationFailed,
)
from cidway.models.allocations import (
    Allocation,
    AllocationInput,
    AllocationListItem,
    Blob,
    InsertResult,
    ListOptions,
    ListPage,
    RemoveResult,
)
from cidway.storage import ConditionalCheckFailed, Item, KeyedStore

logger = logging.getLogger(__name__)

KEY_FIELDS = ("space", "multihash")
ORDER_FIELDS = ("insertedAt", "multihash")
CURSOR_SEPARATOR = "@"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _cursor(item: Item) -> str:
    return f"{item['multihash']}{CURSOR_SEPARATOR}{item['insertedAt']}"


def _parse_cursor(cursor: str) -> tuple[str, str]:
    multihash, sep, inserted_at = cursor.partition(CURSOR_SEPARATOR)
    if not sep or not multihash:
        raise ValueError(f"malformed cursor {cursor!r}")
    datetime.fromisoformat(inserted_at)
    return multihash, inserted_at


def _key(space: str, digest: bytes) -> Item:
    return {"space": space, "multihash": base58btc_encode(digest)}


def _decode(item: Item) -> Allocation:
    return Allocation(
        space=item["space"],
        blob=Blob(digest=base58btc_decode(item["multihash"]), size=int(item["size"])),
        cause=parse_cid(item["cause"]),
        inserted_at=datetime.fromisoformat(item["insertedAt"]),
    )


class AllocationLedger:
    """Space ↔ blob allocation records.

    Parameters
    ----------
    store:
        Keyed store holding the allocations table.
    table:
        Table name.
    """

    def __init__(self, store: KeyedStore, table: str = "allocation") -> None:
        self._store = store
        self._table = table

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, space: str, digest: bytes) -> bool:
        """Best-effort existence check.  Backend errors read as absence."""
        try:
            return self._store.get_item(self._table, _key(space, digest)) is not None
        except Exception:
            logger.warning(
                "Allocation existence check failed for %s; treating as absent.",
                space,
                exc_info=True,
            )
            return False

    def get(
        self, space: str, digest: bytes
    ) -> Result[Allocation, RecordNotFound | DecodeFailure]:
        """Return the allocation for ``(space, digest)``."""
        item = self._store.get_item(self._table, _key(space, digest))
        if item is None:
            return Err(error=RecordNotFound(
                f"no allocation of {base58btc_encode(digest)} in {space}"
            ))
        try:
            return Ok(ok=_decode(item))
        except (KeyError, TypeError, ValueError) as exc:
            return Err(error=DecodeFailure(f"decoding allocation record: {exc}"))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, entry: AllocationInput) -> Result[InsertResult, RecordKeyConflict]:
        """Record a new allocation; fails if one already exists for the key."""
        item = {
            **_key(entry.space, entry.blob.digest),
            "size": entry.blob.size,
            "cause": cid_key(entry.cause),
            "insertedAt": _now(),
        }
        try:
            self._store.put_item(self._table, item, KEY_FIELDS, if_not_exists=True)
        except ConditionalCheckFailed:
            return Err(error=RecordKeyConflict(
                f"{item['multihash']} is already allocated in {entry.space}"
            ))
        logger.info("Allocated %s (%d bytes) in %s", item["multihash"], entry.blob.size, entry.space)
        return Ok(ok=InsertResult(blob=entry.blob))

    def remove(
        self, space: str, digest: bytes
    ) -> Result[RemoveResult, StorageOperationFailed]:
        """Release an allocation.  Already-released keys return ``size=0``."""
        key = _key(space, digest)
        try:
            old = self._store.delete_item(self._table, key, if_exists=True)
        except ConditionalCheckFailed:
            logger.debug("Release of %s in %s was a no-op.", key["multihash"], space)
            return Ok(ok=RemoveResult(size=0))
        except Exception as exc:
            logger.error("Release of %s in %s failed: %s", key["multihash"], space, exc)
            return Err(error=StorageOperationFailed(type(exc).__name__))
        if old is None:
            return Err(error=StorageOperationFailed("missing return values"))
        logger.info("Released %s in %s", key["multihash"], space)
        return Ok(ok=RemoveResult(size=int(old["size"])))

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list(
        self, space: str, options: ListOptions | None = None
    ) -> Result[ListPage, DecodeFailure]:
        """List allocations of *space* by insertion time.

        Forward pages are oldest first; ``reverse`` pages newest first.
        Records inserted in the same instant are ordered by digest.  The
        returned ``cursor`` carries the boundary record's position, so paging
        continues correctly even when that record is released in between.
        """
        options = options or ListOptions()
        start = None
        if options.cursor:
            try:
                multihash, inserted_at = _parse_cursor(options.cursor)
            except ValueError as exc:
                return Err(error=DecodeFailure(str(exc)))
            start = {"space": space, "multihash": multihash, "insertedAt": inserted_at}
        page = self._store.query(
            self._table,
            ("space", space),
            limit=options.size,
            exclusive_start_key=start,
            scan_forward=not options.reverse,
            order_by=ORDER_FIELDS,
        )
        try:
            results = [
                AllocationListItem(
                    blob=Blob(
                        digest=base58btc_decode(item["multihash"]),
                        size=int(item["size"]),
                    ),
                    inserted_at=datetime.fromisoformat(item["insertedAt"]),
                )
                for item in page.items
            ]
        except (KeyError, TypeError, ValueError) as exc:
            return Err(error=DecodeFailure(f"decoding allocation record: {exc}"))

        first = page.items[0]["multihash"] if page.items else None
        last = page.items[-1]["multihash"] if page.items else None
        before, after = (last, first) if options.reverse else (first, last)
        return Ok(ok=ListPage(
            size=len(results),
            results=results,
            before=before,
            after=after,
            cursor=_cursor(page.items[-1]) if page.items else None,
        ))
