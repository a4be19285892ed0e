"""Hashing and content-addressing helpers.

Every persisted identifier in cidway is a multiformats value: blocks are
addressed by CIDv1 over a SHA-256 multihash, and ledger keys use the
base58btc multibase encoding of the multihash (leading ``z``).
"""

from __future__ import annotations

from multiformats import CID, multibase, multihash

SHA2_256 = "sha2-256"
RAW_CODEC = 0x55
DAG_CBOR_CODEC = 0x71
CAR_CODEC = 0x0202


def sha256_multihash(data: bytes) -> bytes:
    """Return the sha2-256 multihash (code, length, digest) of *data*."""
    return multihash.digest(data, SHA2_256)


def base58btc_encode(digest: bytes) -> str:
    """Encode a multihash as a base58btc multibase string."""
    return multibase.encode(digest, "base58btc")


def base58btc_decode(value: str) -> bytes:
    """Decode a base58btc multibase string back into multihash bytes."""
    return multibase.decode(value)


def block_cid(data: bytes, codec: str | int = "dag-cbor") -> CID:
    """CIDv1 of a block under *codec*, hashed with SHA-256."""
    return CID("base32", 1, codec, sha256_multihash(data))


def raw_cid(data: bytes) -> CID:
    """CIDv1 of raw bytes."""
    return block_cid(data, "raw")


def parse_cid(value: str | bytes) -> CID:
    """Parse a CID from its string or binary form.

    Raises ``ValueError`` for anything that is not a well-formed CID.
    """
    try:
        return CID.decode(value)
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError(f"invalid CID {value!r}: {exc}") from exc


def cid_key(cid: CID) -> str:
    """Canonical string form: base32 for CIDv1, base58btc for CIDv0."""
    return cid.encode("base32") if cid.version == 1 else str(cid)
