"""Content location: from a CID to a signed, time-limited retrieval URL.

Key layouts probed in the content bucket, in priority order:

- CAR CIDs (codec ``car``): ``{cid}/{cid}.car``
- any other CID: ``{b58mh}/{b58mh}.blob`` where ``b58mh`` is the base58btc
  multihash, then ``{car}/{car}.car`` for the same multihash re-encoded
  with the ``car`` codec.

Every probe is existence-checked by the object store, so a miss is
``None`` rather than a URL to a 404.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from multiformats import CID

from cidway.core.hasher import CAR_CODEC, base58btc_encode, cid_key
from cidway.core.results import (
    ContentNotFound,
    Err,
    NoEquivalentCids,
    Ok,
    Result,
)
from cidway.storage import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3 * 24 * 60 * 60
MAX_EXPIRES_IN = 7 * 24 * 60 * 60


def car_key(cid: CID) -> str:
    """Bucket key of a CAR shard."""
    key = cid_key(cid)
    return f"{key}/{key}.car"


def blob_key(digest: bytes) -> str:
    """Bucket key of a blob addressed by its multihash."""
    encoded = base58btc_encode(digest)
    return f"{encoded}/{encoded}.blob"


def candidate_keys(cid: CID) -> list[str]:
    """Every bucket key *cid* may be stored under, highest priority first."""
    if cid.codec.code == CAR_CODEC:
        return [car_key(cid)]
    v1 = cid.set(version=1) if cid.version == 0 else cid
    return [blob_key(cid.digest), car_key(v1.set(codec=CAR_CODEC))]


def clamp_expires_in(expires_in: int | None) -> int:
    """Apply the default lifetime and cap it at the presigning maximum."""
    if expires_in is None:
        return DEFAULT_EXPIRES_IN
    return max(1, min(int(expires_in), MAX_EXPIRES_IN))


class ContentLocationResolver:
    """Resolves CIDs and raw keys to signed URLs.

    Parameters
    ----------
    store:
        Object store holding the content bucket.
    bucket:
        Default bucket name.
    expires_in:
        URL lifetime in seconds; ``None`` applies ``DEFAULT_EXPIRES_IN``.
    """

    def __init__(
        self, store: ObjectStore, bucket: str, expires_in: int | None = None
    ) -> None:
        self._store = store
        self._bucket = bucket
        self._expires_in = clamp_expires_in(expires_in)

    @property
    def expires_in(self) -> int:
        return self._expires_in

    def with_expires_in(self, expires_in: int | None) -> ContentLocationResolver:
        """A resolver over the same bucket issuing URLs of another lifetime."""
        if expires_in is None:
            return self
        return ContentLocationResolver(self._store, self._bucket, expires_in)

    def resolve(self, cid: CID) -> str | None:
        """Return a signed URL for the first candidate key that exists."""
        for key in candidate_keys(cid):
            url = self._store.signed_url(self._bucket, key, self._expires_in)
            if url is not None:
                logger.debug("Located %s at %s/%s", cid_key(cid), self._bucket, key)
                return url
        return None

    def resolve_any(
        self, cids: Iterable[CID]
    ) -> Result[str, NoEquivalentCids | ContentNotFound]:
        """Probe *cids* in order; the first hit wins.

        An empty input is ``NoEquivalentCids``; a non-empty input with no hit
        is ``ContentNotFound``.
        """
        tried = 0
        for cid in cids:
            tried += 1
            url = self.resolve(cid)
            if url is not None:
                return Ok(ok=url)
        if tried == 0:
            return Err(error=NoEquivalentCids())
        return Err(error=ContentNotFound(f"no content found for {tried} equivalent CIDs"))

    def resolve_key(self, key: str, bucket: str | None = None) -> str | None:
        """Sign a raw bucket key, or return ``None`` if it does not exist."""
        return self._store.signed_url(bucket or self._bucket, key, self._expires_in)
