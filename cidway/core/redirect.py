"""Redirect resolution: CID -> signed URL, composing equivalence and location.

Piece CIDs (v2) are expanded through their equivalence claims and each
candidate is probed in turn.  Content CIDs (``raw`` and ``car``) are
probed directly.  Everything else is unsupported.
"""

from __future__ import annotations

from multiformats import CID

from cidway.core.content_locator import ContentLocationResolver
from cidway.core.equivalence import EquivalenceClaims
from cidway.core.hasher import CAR_CODEC, RAW_CODEC
from cidway.core.piece import as_piece_cid_v1, as_piece_cid_v2
from cidway.core.results import (
    ContentNotFound,
    Err,
    MalformedIdentifier,
    NoEquivalentCids,
    Ok,
    Result,
    StoreError,
    UnsupportedIdentifier,
    UnsupportedVersion,
)

CONTENT_CODECS = frozenset({RAW_CODEC, CAR_CODEC})

HTTP_STATUS = {
    UnsupportedIdentifier.name: 415,
    UnsupportedVersion.name: 415,
    MalformedIdentifier.name: 400,
    NoEquivalentCids.name: 404,
    ContentNotFound.name: 404,
}


def status_for(error: StoreError) -> int:
    """HTTP status code of a resolution failure; 500 for anything else."""
    return HTTP_STATUS.get(error.name, 500)


def locate(
    cid: CID, claims: EquivalenceClaims, locator: ContentLocationResolver
) -> Result[
    str,
    UnsupportedIdentifier
    | UnsupportedVersion
    | MalformedIdentifier
    | NoEquivalentCids
    | ContentNotFound,
]:
    """Find a signed URL for *cid*."""
    if as_piece_cid_v2(cid) is not None:
        equivalent = claims.resolve(cid)
        if isinstance(equivalent, Err):
            return equivalent
        return locator.resolve_any(equivalent.ok)
    if as_piece_cid_v1(cid) is not None:
        return Err(error=UnsupportedVersion())
    if cid.codec.code not in CONTENT_CODECS:
        return Err(error=UnsupportedIdentifier(f"Unsupported CID type {cid.codec.name}"))
    url = locator.resolve(cid)
    if url is None:
        return Err(error=ContentNotFound("Content Not found"))
    return Ok(ok=url)
