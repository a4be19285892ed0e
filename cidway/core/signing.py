"""Ed25519 signing for invocations and receipts.

Principals are identified by ``did:key`` strings: the multibase base58btc
encoding of the ``ed25519-pub`` multicodec prefix (``0xed 0x01``) followed
by the 32-byte public key.

Signatures are raw 64-byte Ed25519 signatures over the DAG-CBOR bytes of
the signed payload, produced and checked with PyNaCl (libsodium).
"""

from __future__ import annotations

import logging

import nacl.signing
from multiformats import multibase
from nacl.exceptions import BadSignatureError

logger = logging.getLogger(__name__)

ED25519_PUB_PREFIX = b"\xed\x01"
DID_KEY_PREFIX = "did:key:"


class InvalidDid(ValueError):
    """Raised when a string is not an Ed25519 ``did:key``."""


# ---------------------------------------------------------------------------
# did:key
# ---------------------------------------------------------------------------


def did_from_public_key(public_key: bytes) -> str:
    """Encode a raw Ed25519 public key as ``did:key:z...``."""
    if len(public_key) != 32:
        raise InvalidDid(f"expected a 32-byte Ed25519 key, got {len(public_key)} bytes")
    return DID_KEY_PREFIX + multibase.encode(ED25519_PUB_PREFIX + public_key, "base58btc")


def public_key_from_did(did: str) -> bytes:
    """Decode the raw public key out of an Ed25519 ``did:key``."""
    if not did.startswith(DID_KEY_PREFIX):
        raise InvalidDid(f"not a did:key: {did!r}")
    try:
        raw = multibase.decode(did[len(DID_KEY_PREFIX):])
    except (KeyError, ValueError) as exc:
        raise InvalidDid(f"malformed did:key {did!r}: {exc}") from exc
    if not raw.startswith(ED25519_PUB_PREFIX) or len(raw) != 34:
        raise InvalidDid(f"did:key {did!r} is not an Ed25519 key")
    return raw[len(ED25519_PUB_PREFIX):]


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


class Signer:
    """An Ed25519 keypair that signs as its ``did:key``.

    Parameters
    ----------
    seed:
        32-byte private seed.  ``Signer.generate()`` makes a fresh one.
    """

    def __init__(self, seed: bytes) -> None:
        self._key = nacl.signing.SigningKey(seed)
        self.did = did_from_public_key(self._key.verify_key.encode())

    @classmethod
    def generate(cls) -> Signer:
        return cls(nacl.signing.SigningKey.generate().encode())

    @classmethod
    def from_hex(cls, seed_hex: str) -> Signer:
        return cls(bytes.fromhex(seed_hex))

    @property
    def seed_hex(self) -> str:
        return self._key.encode().hex()

    def sign(self, data: bytes) -> bytes:
        """Return the 64-byte detached signature of *data*."""
        return self._key.sign(data).signature


def verify(data: bytes, signature: bytes, did: str) -> bool:
    """Check *signature* over *data* against the key named by *did*.

    Returns ``False`` for malformed DIDs, malformed signatures and
    signatures that do not verify.
    """
    try:
        verify_key = nacl.signing.VerifyKey(public_key_from_did(did))
        verify_key.verify(data, signature)
        return True
    except InvalidDid:
        logger.warning("Cannot verify signature: %s is not an Ed25519 did:key", did)
        return False
    except (BadSignatureError, ValueError, TypeError):
        logger.debug("Signature verification failed for %s", did)
        return False
