"""CAR v1 (Content Addressable aRchive) encoding and decoding.

Layout::

    varint(len(header)) || header            header = dag-cbor {"roots": [...], "version": 1}
    varint(len(cid) + len(data)) || cid || data      repeated for every block

CIDs inside sections are binary: a CIDv0 is a bare 34-byte sha2-256
multihash, a CIDv1 is ``varint(1) || varint(codec) || multihash``.
"""

from __future__ import annotations

import io
from collections.abc import Iterable, Mapping

import dag_cbor
from multiformats import CID, varint
from pydantic import BaseModel, ConfigDict

CAR_CONTENT_TYPE = "application/vnd.ipld.car"


class CarDecodeError(ValueError):
    """Raised for truncated or malformed CAR bytes."""


class CarArchive(BaseModel):
    """A decoded CAR: root CIDs and blocks keyed by CID."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    roots: list[CID]
    blocks: dict[CID, bytes]

    def get(self, cid: CID) -> bytes | None:
        return self.blocks.get(cid)


def encode_car(roots: Iterable[CID], blocks: Iterable[tuple[CID, bytes]]) -> bytes:
    """Serialise *roots* and *blocks* into CAR v1 bytes."""
    header = dag_cbor.encode({"roots": list(roots), "version": 1})
    out = io.BytesIO()
    out.write(varint.encode(len(header)))
    out.write(header)
    for cid, data in blocks:
        cid_bytes = bytes(cid)
        out.write(varint.encode(len(cid_bytes) + len(data)))
        out.write(cid_bytes)
        out.write(data)
    return out.getvalue()


def _read_varint(stream: io.BytesIO) -> int:
    try:
        return varint.decode(stream)
    except (ValueError, EOFError) as exc:
        raise CarDecodeError(f"bad varint at offset {stream.tell()}: {exc}") from exc


def _read_exact(stream: io.BytesIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise CarDecodeError(f"truncated CAR: wanted {size} bytes, got {len(data)}")
    return data


def _split_cid(section: bytes) -> tuple[CID, bytes]:
    """Split a block section into its leading binary CID and the block data."""
    if section[:2] == b"\x12\x20":
        return CID.decode(section[:34]), section[34:]
    stream = io.BytesIO(section)
    version = _read_varint(stream)
    if version != 1:
        raise CarDecodeError(f"unsupported CID version {version}")
    _read_varint(stream)  # codec
    _read_varint(stream)  # multihash code
    digest_size = _read_varint(stream)
    end = stream.tell() + digest_size
    if end > len(section):
        raise CarDecodeError("truncated CID in block section")
    return CID.decode(section[:end]), section[end:]


def decode_car(data: bytes) -> CarArchive:
    """Parse CAR v1 bytes.  Raises ``CarDecodeError`` on malformed input."""
    stream = io.BytesIO(data)
    header_size = _read_varint(stream)
    try:
        header = dag_cbor.decode(_read_exact(stream, header_size))
    except CarDecodeError:
        raise
    except Exception as exc:
        raise CarDecodeError(f"invalid CAR header: {exc}") from exc
    if not isinstance(header, Mapping) or header.get("version") != 1:
        raise CarDecodeError(f"unsupported CAR header {header!r}")
    roots = header.get("roots")
    if not isinstance(roots, list) or not all(isinstance(r, CID) for r in roots):
        raise CarDecodeError("CAR header roots must be a list of CIDs")

    blocks: dict[CID, bytes] = {}
    while stream.tell() < len(data):
        section = _read_exact(stream, _read_varint(stream))
        try:
            cid, block = _split_cid(section)
        except CarDecodeError:
            raise
        except (KeyError, ValueError) as exc:
            raise CarDecodeError(f"invalid block CID: {exc}") from exc
        blocks[cid] = block
    return CarArchive(roots=roots, blocks=blocks)
