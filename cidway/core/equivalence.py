"""Identifier equivalence for piece CIDs.

A piece CID cannot be turned back into the content CID it was computed
from.  Equivalences therefore come from *claims* recorded when a piece is
computed (``EquivalenceClaims.assert_equals``), and the resolver expands
each claim through a fixed set of re-encodings so the location resolver
can try every key layout the content might be stored under.

``find_equivalent_cids`` is pure: it takes the claimed CIDs as an argument
and performs no I/O.  ``EquivalenceClaims`` is the storage side.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from multiformats import CID

from cidway.core.hasher import CAR_CODEC, RAW_CODEC, cid_key, parse_cid, raw_cid
from cidway.core.piece import (
    as_piece_cid_v1,
    as_piece_cid_v2,
    compute_piece_cid,
    piece_v2_to_v1,
)
from cidway.core.results import (
    Err,
    MalformedIdentifier,
    Ok,
    Result,
    UnsupportedIdentifier,
    UnsupportedVersion,
)
from cidway.storage import KeyedStore

logger = logging.getLogger(__name__)

CLAIMS_KEY_FIELDS = ("piece", "content")


def _reencodings(cid: CID) -> list[CID]:
    v1 = cid.set(version=1) if cid.version == 0 else cid
    return [cid, v1.set(codec=RAW_CODEC), v1.set(codec=CAR_CODEC)]


def find_equivalent_cids(
    piece: CID, claimed: Iterable[CID] = ()
) -> Result[
    tuple[CID, ...], UnsupportedVersion | UnsupportedIdentifier | MalformedIdentifier
]:
    """Enumerate every identifier that may denote the same content as *piece*.

    The result is an ordered set: claimed CIDs in claim order, each
    followed by its ``raw`` and ``car`` re-encodings, then the piece itself
    and its v1 form.  It is empty when nothing is claimed.

    v1 pieces are rejected with ``UnsupportedVersion``; any other non-piece
    CID with ``UnsupportedIdentifier``.  A v2 piece whose digest does not
    unpack is ``MalformedIdentifier``.
    """
    if as_piece_cid_v2(piece) is None:
        if as_piece_cid_v1(piece) is not None:
            return Err(error=UnsupportedVersion())
        return Err(error=UnsupportedIdentifier(f"{cid_key(piece)} is not a piece CID"))
    try:
        v1 = piece_v2_to_v1(piece)
    except ValueError as exc:
        return Err(error=MalformedIdentifier(str(exc)))

    claimed = list(claimed)
    if not claimed:
        return Ok(ok=())

    seen: set[bytes] = set()
    result: list[CID] = []
    candidates = [c for claim in claimed for c in _reencodings(claim)]
    candidates += [piece, v1]
    for candidate in candidates:
        raw = bytes(candidate)
        if raw not in seen:
            seen.add(raw)
            result.append(candidate)
    return Ok(ok=tuple(result))


class EquivalenceClaims:
    """Persisted ``content ≡ piece`` assertions.

    Parameters
    ----------
    store:
        The keyed store holding the claims table.
    table:
        Table name.  Items are partitioned by piece CID.
    """

    def __init__(self, store: KeyedStore, table: str = "equivalence-claims") -> None:
        self._store = store
        self._table = table

    def assert_equals(self, content: CID, piece: CID) -> None:
        """Record that *content* and *piece* denote the same bytes.  Idempotent."""
        self._store.put_item(
            self._table,
            {
                "piece": cid_key(piece),
                "content": cid_key(content),
                "insertedAt": datetime.now(timezone.utc).isoformat(),
            },
            CLAIMS_KEY_FIELDS,
        )
        logger.info("Recorded equivalence %s == %s", cid_key(content), cid_key(piece))

    def claimed(self, piece: CID) -> list[CID]:
        """Return every content CID claimed equal to *piece*, oldest first."""
        found: list[CID] = []
        start = None
        while True:
            page = self._store.query(
                self._table,
                ("piece", cid_key(piece)),
                limit=100,
                exclusive_start_key=start,
            )
            found.extend(parse_cid(item["content"]) for item in page.items)
            if page.last_evaluated_key is None:
                return found
            start = page.last_evaluated_key

    def register_content(self, data: bytes) -> tuple[CID, CID]:
        """Compute the raw CID and v2 piece CID of *data* and claim them equal."""
        content = raw_cid(data)
        piece = compute_piece_cid(data)
        self.assert_equals(content, piece)
        return content, piece

    def resolve(
        self, piece: CID
    ) -> Result[
        tuple[CID, ...], UnsupportedVersion | UnsupportedIdentifier | MalformedIdentifier
    ]:
        """Look up claims for *piece* and expand them.

        Identifiers rejected by ``find_equivalent_cids`` never reach the
        claims table.
        """
        checked = find_equivalent_cids(piece)
        if isinstance(checked, Err):
            return checked
        return find_equivalent_cids(piece, self.claimed(piece))
