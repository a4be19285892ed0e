"""Allocation ledger models.

An allocation binds a blob digest to a space.  It is created by an
authorized allocate invocation (the ``cause``) and destroyed by a release.
It is never updated in place.
"""

from __future__ import annotations

from datetime import datetime, timezone

from multiformats import CID
from pydantic import BaseModel, ConfigDict, Field


class Blob(BaseModel):
    """A blob reference: multihash digest and byte size."""

    model_config = ConfigDict(frozen=True)

    digest: bytes
    size: int = Field(ge=0)


class AllocationInput(BaseModel):
    """Arguments of ``AllocationLedger.insert``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    space: str  # did:key:...
    blob: Blob
    cause: CID


class Allocation(BaseModel):
    """A live allocation record."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    space: str
    blob: Blob
    cause: CID
    inserted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class AllocationListItem(BaseModel):
    """Projection returned by ``AllocationLedger.list``."""

    model_config = ConfigDict(frozen=True)

    blob: Blob
    inserted_at: datetime


class ListOptions(BaseModel):
    """Pagination options for ``AllocationLedger.list``."""

    model_config = ConfigDict(frozen=True)

    cursor: str | None = None  # "{multihash}@{insertedAt}" of the boundary record
    size: int = Field(default=20, gt=0)
    reverse: bool = False


class ListPage(BaseModel):
    """One page of allocations.

    ``before`` and ``after`` are the digests at both ends of the page in
    ascending insertion order; ``cursor`` is the position of the last record
    in scan order, to pass back to keep paging in the same direction.
    """

    model_config = ConfigDict(frozen=True)

    size: int
    results: list[AllocationListItem]
    before: str | None = None
    after: str | None = None
    cursor: str | None = None


class InsertResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    blob: Blob


class RemoveResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: int
