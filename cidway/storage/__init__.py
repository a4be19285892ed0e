"""Storage capability interfaces for cidway.

The core never talks to a concrete backend.  It depends on two Protocols:

``ObjectStore``
    Bucket/key blob storage: put, get, prefix listing and existence-checked
    signed retrieval URLs.  Implemented by ``MemoryObjectStore``,
    ``FileSystemObjectStore`` and ``S3ObjectStore``.

``KeyedStore``
    Partitioned item tables with atomic conditional writes and deletes,
    partition queries ordered by insertion or by a sort attribute, and
    counter increments.
    Implemented by ``MemoryKeyedStore`` and ``SqliteKeyedStore``.

Backends signal absence with ``ObjectNotFound`` and failed conditions with
``ConditionalCheckFailed`` so callers can tell them apart from every other
failure.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

Item = dict[str, Any]


class ObjectNotFound(LookupError):
    """Raised by an ObjectStore when the requested key does not exist."""

    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(f"object {bucket}/{key} not found")
        self.bucket = bucket
        self.key = key


class ConditionalCheckFailed(RuntimeError):
    """Raised by a KeyedStore when a conditional write or delete is rejected."""


class QueryPage(BaseModel):
    """One page of a partition query."""

    model_config = ConfigDict(frozen=True)

    items: list[Item] = []
    last_evaluated_key: Item | None = None


@runtime_checkable
class ObjectStore(Protocol):
    """Blob storage addressed by ``(bucket, key)``."""

    def put(self, bucket: str, key: str, body: bytes = b"") -> None:
        """Store *body* under *key*.  Overwrites silently."""
        ...

    def get(self, bucket: str, key: str) -> bytes:
        """Return the bytes under *key* or raise ``ObjectNotFound``."""
        ...

    def list(self, bucket: str, prefix: str) -> list[str]:
        """Return every key in *bucket* starting with *prefix*, sorted."""
        ...

    def signed_url(self, bucket: str, key: str, expires_in: int) -> str | None:
        """Return a time-limited retrieval URL, or ``None`` if *key* is absent."""
        ...


@runtime_checkable
class KeyedStore(Protocol):
    """Partitioned item tables with atomic conditional operations.

    Every item belongs to a partition (``key_fields[0]``) and is identified
    within it by a sort value (``key_fields[1]``).  Tables with a single
    key field use the empty string as sort value.
    """

    def get_item(self, table: str, key: Item) -> Item | None:
        """Return the item stored under *key*, or ``None``."""
        ...

    def put_item(
        self,
        table: str,
        item: Item,
        key_fields: tuple[str, ...],
        *,
        if_not_exists: bool = False,
    ) -> None:
        """Write *item*.  With *if_not_exists* raise ``ConditionalCheckFailed``
        when the key is already present, atomically."""
        ...

    def delete_item(
        self, table: str, key: Item, *, if_exists: bool = False
    ) -> Item | None:
        """Delete and return the old item.  With *if_exists* raise
        ``ConditionalCheckFailed`` when nothing was there, atomically."""
        ...

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
        """Return up to *limit* items of one partition.

        Items come in insertion order, and *exclusive_start_key* must name a
        live item.  With *order_by* they are sorted on those attributes
        instead, and *exclusive_start_key* is a position holding them, so it
        stays valid after the item it came from is deleted.
        """
        ...

    def add(
        self,
        table: str,
        key_fields: tuple[str, ...],
        increments: list[tuple[Item, dict[str, int]]],
    ) -> None:
        """Add each delta to the named numeric attribute of its item.

        The whole batch is applied in one transaction.  Missing items are
        created with the key attributes and the deltas as initial values.
        """
        ...


__all__ = [
    "ConditionalCheckFailed",
    "Item",
    "KeyedStore",
    "ObjectNotFound",
    "ObjectStore",
    "QueryPage",
]
