"""Piece CIDs: computation, classification and v2 → v1 conversion.

A piece commitment (CommP) is the root of a binary SHA-256 merkle tree
over the fr32-padded payload, with the two most significant bits of every
node zeroed.  It is published in two encodings:

v1
    codec ``fil-commitment-unsealed``, multihash
    ``sha2-256-trunc254-padded``, digest = 32-byte root.
v2 (FRC-0069)
    codec ``raw``, multihash ``fr32-sha256-trunc254-padbintree``, digest =
    ``varint(padding) || height || root``.

A v2 CID carries everything a v1 CID does, so v2 → v1 is exact.  The
reverse loses the payload size, which is why the resolver never tries to
build a v2 CID from a v1 one.
"""

from __future__ import annotations

import hashlib
from io import BytesIO

from multiformats import CID, multicodec, multihash, varint
from multiformats.multicodec import Multicodec
from multiformats.multihash import raw as hash_registry
from pydantic import BaseModel, ConfigDict

from cidway.core.hasher import RAW_CODEC

FR32_SHA256_TRUNC254_PADBINTREE = "fr32-sha256-trunc254-padbintree"
FR32_SHA256_TRUNC254_PADBINTREE_CODE = 0x1011
SHA2_256_TRUNC254_PADDED = "sha2-256-trunc254-padded"
SHA2_256_TRUNC254_PADDED_CODE = 0x1012
FIL_COMMITMENT_UNSEALED = "fil-commitment-unsealed"
FIL_COMMITMENT_UNSEALED_CODE = 0xF101

NODE_SIZE = 32
# fr32 expands every 127 payload bytes into 128 bytes (254 bits per field element).
FR32_IN = 127
FR32_OUT = 128
MIN_PADDED_SIZE = 128


class PieceInfo(BaseModel):
    """Fields packed into a v2 piece CID digest."""

    model_config = ConfigDict(frozen=True)

    root: bytes
    height: int
    padding: int

    @property
    def padded_size(self) -> int:
        return NODE_SIZE << self.height

    @property
    def unpadded_size(self) -> int:
        return self.padded_size * FR32_IN // FR32_OUT

    @property
    def payload_size(self) -> int:
        return self.unpadded_size - self.padding


# ---------------------------------------------------------------------------
# CommP
# ---------------------------------------------------------------------------


def _trunc254(digest: bytes) -> bytes:
    return digest[:-1] + bytes([digest[-1] & 0b0011_1111])


def _node(left: bytes, right: bytes) -> bytes:
    return _trunc254(hashlib.sha256(left + right).digest())


def padded_piece_size(payload_size: int) -> int:
    """Smallest power-of-two padded size whose fr32 capacity fits the payload."""
    needed = -(-payload_size * FR32_OUT // FR32_IN)
    size = MIN_PADDED_SIZE
    while size < needed:
        size <<= 1
    return size


def fr32_pad(data: bytes, padded_size: int) -> bytes:
    """Zero-fill *data* to the unpadded size, then insert two zero bits
    after every 254 bits."""
    unpadded_size = padded_size * FR32_IN // FR32_OUT
    if len(data) > unpadded_size:
        raise ValueError(f"payload of {len(data)} bytes does not fit {padded_size}")
    source = data + bytes(unpadded_size - len(data))
    out = bytearray()
    mask = (1 << 254) - 1
    for offset in range(0, unpadded_size, FR32_IN):
        chunk = int.from_bytes(source[offset : offset + FR32_IN], "little")
        quad = 0
        for i in range(4):
            quad |= ((chunk >> (254 * i)) & mask) << (256 * i)
        out += quad.to_bytes(FR32_OUT, "little")
    return bytes(out)


def merkle_root(padded: bytes) -> tuple[bytes, int]:
    """Return ``(root, height)`` of the trunc254 binary tree over *padded*."""
    layer = [padded[i : i + NODE_SIZE] for i in range(0, len(padded), NODE_SIZE)]
    height = 0
    while len(layer) > 1:
        layer = [_node(layer[i], layer[i + 1]) for i in range(0, len(layer), 2)]
        height += 1
    return layer[0], height


def _piece_digest(data: bytes, size: int | None = None) -> bytes:
    if not data:
        raise ValueError("cannot compute a piece commitment over empty data")
    padded_size = padded_piece_size(len(data))
    root, height = merkle_root(fr32_pad(bytes(data), padded_size))
    padding = padded_size * FR32_IN // FR32_OUT - len(data)
    return varint.encode(padding) + bytes([height]) + root


def _register_piece_multihash() -> None:
    if not multicodec.exists(FR32_SHA256_TRUNC254_PADBINTREE):
        multicodec.register(
            Multicodec(
                FR32_SHA256_TRUNC254_PADBINTREE,
                "multihash",
                FR32_SHA256_TRUNC254_PADBINTREE_CODE,
                "draft",
                "Filecoin piece tree hash with fr32 padding and payload size (FRC-0069)",
            )
        )
    if not hash_registry.exists(FR32_SHA256_TRUNC254_PADBINTREE):
        hash_registry.register(FR32_SHA256_TRUNC254_PADBINTREE, _piece_digest, None)


_register_piece_multihash()


def compute_piece_cid(data: bytes) -> CID:
    """Compute the v2 piece CID of a payload."""
    digest = multihash.digest(data, FR32_SHA256_TRUNC254_PADBINTREE)
    return CID("base32", 1, RAW_CODEC, digest)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def as_piece_cid_v2(cid: CID) -> CID | None:
    """Return *cid* if it is a v2 piece CID, else ``None``."""
    if cid.codec.code == RAW_CODEC and cid.hashfun.code == FR32_SHA256_TRUNC254_PADBINTREE_CODE:
        return cid
    return None


def as_piece_cid_v1(cid: CID) -> CID | None:
    """Return *cid* if it is a v1 piece CID, else ``None``."""
    if (
        cid.codec.code == FIL_COMMITMENT_UNSEALED_CODE
        and cid.hashfun.code == SHA2_256_TRUNC254_PADDED_CODE
    ):
        return cid
    return None


def piece_info(cid: CID) -> PieceInfo:
    """Unpack padding, height and root from a v2 piece CID.

    Raises ``ValueError`` if *cid* is not a well-formed v2 piece CID.
    """
    if as_piece_cid_v2(cid) is None:
        raise ValueError(f"{cid} is not a v2 piece CID")
    stream = BytesIO(cid.raw_digest)
    padding = varint.decode(stream)
    height_byte = stream.read(1)
    root = stream.read()
    if len(height_byte) != 1 or len(root) != NODE_SIZE:
        raise ValueError(f"{cid} has a malformed piece digest")
    return PieceInfo(root=root, height=height_byte[0], padding=padding)


def piece_v2_to_v1(cid: CID) -> CID:
    """Convert a v2 piece CID into its v1 form."""
    info = piece_info(cid)
    return CID(
        "base32",
        1,
        FIL_COMMITMENT_UNSEALED,
        (SHA2_256_TRUNC254_PADDED, info.root),
    )
