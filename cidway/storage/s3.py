"""S3-compatible ObjectStore (AWS S3, R2, MinIO) backed by boto3.

Signed URLs are presigned ``GetObject`` requests.  Before signing, the key
is checked with ``HeadObject`` so a URL is never issued for a missing
object.  ``NoSuchKey``/``404``/``NotFound`` client errors become
``ObjectNotFound``; every other error propagates unchanged.
"""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from cidway.storage import ObjectNotFound

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def _is_not_found(err: ClientError) -> bool:
    return err.response.get("Error", {}).get("Code", "") in _NOT_FOUND_CODES


class S3ObjectStore:
    """ObjectStore over an S3 client.

    Parameters
    ----------
    client:
        A boto3 S3 client.  When omitted one is built from *region* and
        *endpoint_url*.
    region:
        AWS region name.
    endpoint_url:
        Custom endpoint for S3-compatible services.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        if client is None:
            client = boto3.session.Session(region_name=region).client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(retries={"max_attempts": 5, "mode": "standard"}),
            )
        self._s3 = client

    def put(self, bucket: str, key: str, body: bytes = b"") -> None:
        self._s3.put_object(Bucket=bucket, Key=key, Body=body)

    def get(self, bucket: str, key: str) -> bytes:
        try:
            resp = self._s3.get_object(Bucket=bucket, Key=key)
        except ClientError as err:
            if _is_not_found(err):
                raise ObjectNotFound(bucket, key) from err
            raise
        return resp["Body"].read()

    def list(self, bucket: str, prefix: str) -> list[str]:
        keys: list[str] = []
        kwargs: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        while True:
            resp = self._s3.list_objects_v2(**kwargs)
            keys.extend(obj["Key"] for obj in resp.get("Contents", []))
            if not resp.get("IsTruncated"):
                break
            kwargs["ContinuationToken"] = resp["NextContinuationToken"]
        return sorted(keys)

    def signed_url(self, bucket: str, key: str, expires_in: int) -> str | None:
        try:
            self._s3.head_object(Bucket=bucket, Key=key)
        except ClientError as err:
            if _is_not_found(err):
                return None
            raise
        return self._s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in,
        )
