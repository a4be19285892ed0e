"""Local-disk ObjectStore with HMAC-signed retrieval URLs.

Storage layout: {base_path}/{bucket}/{key}
Keys may contain ``/`` and map to nested directories.  Writes go through
a temporary file and an atomic rename, so a reader never sees a partial
object.

Signed URLs point at the HTTP app's ``/_local/{bucket}/{key}`` route and
carry ``expires`` and ``signature`` query parameters.  The signature is
HMAC-SHA256 over ``{bucket}/{key}:{expires}`` with the configured secret.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import tempfile
import time
from pathlib import Path
from urllib.parse import quote

from cidway.storage import ObjectNotFound


class InvalidKeyError(ValueError):
    """Raised when a bucket or key would escape the store's base path."""


class FileSystemObjectStore:
    """Bucket/key blob storage rooted at a directory.

    Parameters
    ----------
    base_path:
        Root directory for all buckets.
    signing_secret:
        Secret used to sign and verify retrieval URLs.
    public_url:
        Base URL of the HTTP app that serves ``/_local`` links.
    """

    def __init__(
        self,
        base_path: Path,
        *,
        signing_secret: str,
        public_url: str = "http://127.0.0.1:8787",
    ) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        self._secret = signing_secret.encode("utf-8")
        self._public_url = public_url.rstrip("/")

    def _bucket_path(self, bucket: str) -> Path:
        if bucket in ("", ".", "..") or "/" in bucket:
            raise InvalidKeyError(f"invalid bucket {bucket!r}")
        return self._base / bucket

    def _object_path(self, bucket: str, key: str) -> Path:
        parts = key.split("/")
        if any(p in ("", ".", "..") for p in parts):
            raise InvalidKeyError(f"invalid object address {bucket!r}/{key!r}")
        return self._bucket_path(bucket).joinpath(*parts)

    # ------------------------------------------------------------------
    # ObjectStore
    # ------------------------------------------------------------------

    def put(self, bucket: str, key: str, body: bytes = b"") -> None:
        path = self._object_path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(body)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, bucket: str, key: str) -> bytes:
        path = self._object_path(bucket, key)
        if not path.is_file():
            raise ObjectNotFound(bucket, key)
        return path.read_bytes()

    def list(self, bucket: str, prefix: str) -> list[str]:
        # Only the directory holding the prefix needs walking.
        directory = prefix.rpartition("/")[0]
        try:
            root = self._bucket_path(bucket)
            start = self._object_path(bucket, directory) if directory else root
        except InvalidKeyError:
            return []
        if not start.is_dir():
            return []
        keys = (
            p.relative_to(root).as_posix()
            for p in start.rglob("*")
            if p.is_file() and not p.name.startswith(".tmp-")
        )
        return sorted(k for k in keys if k.startswith(prefix))

    def signed_url(self, bucket: str, key: str, expires_in: int) -> str | None:
        try:
            path = self._object_path(bucket, key)
        except InvalidKeyError:
            return None
        if not path.is_file():
            return None
        expires = int(time.time()) + expires_in
        signature = self.sign(bucket, key, expires)
        return (
            f"{self._public_url}/_local/{quote(bucket)}/{quote(key)}"
            f"?expires={expires}&signature={signature}"
        )

    # ------------------------------------------------------------------
    # URL signatures
    # ------------------------------------------------------------------

    def sign(self, bucket: str, key: str, expires: int) -> str:
        """Return the hex HMAC for a retrieval link."""
        message = f"{bucket}/{key}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, bucket: str, key: str, expires: int, signature: str) -> bool:
        """Return ``True`` if *signature* is valid and the link has not expired."""
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self.sign(bucket, key, expires), signature)
