# src/storage/s3_blob_store.py - v1
"""S3-compatible blob store (ARTIFACT_STORE=s3).

Supports AWS S3, MinIO, and other S3-compatible storage.
Requires 'boto3' package: pip install boto3.
"""

from __future__ import annotations

import logging

from dialectica.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)


class S3BlobStore(BaseBlobStore):
    """Store artifacts in S3-compatible object storage."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "dialectica/",
        region: str | None = None,
        endpoint_url: str | None = None,
        client: object | None = None,
    ) -> None:
        """Initialize S3 blob store.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix for all objects.
            region: AWS region (optional, uses boto3 default if not set).
            endpoint_url: Custom endpoint for MinIO/compatible storage.
            client: Pre-built boto3 S3 client.
        """
        if client is None:
            try:
                import boto3
            except ImportError as e:
                raise ImportError(
                    "boto3 package required for S3 storage: pip install boto3"
                ) from e

            kwargs: dict = {}
            if region:
                kwargs["region_name"] = region
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)

        self._s3 = client
        self._bucket = bucket
        self._prefix = prefix.rstrip("/") + "/" if prefix else ""

    def _full_key(self, path: str) -> str:
        return f"{self._prefix}{path}"

    async def write(self, path: str, content: bytes | str) -> None:
        key = self._full_key(path)
        body = content.encode("utf-8") if isinstance(content, str) else content
        self._s3.put_object(Bucket=self._bucket, Key=key, Body=body)
        logger.debug("S3 write: s3://%s/%s (%d bytes)", self._bucket, key, len(body))

    async def read(self, path: str) -> bytes:
        response = self._s3.get_object(Bucket=self._bucket, Key=self._full_key(path))
        return response["Body"].read()

    async def exists(self, path: str) -> bool:
        try:
            self._s3.head_object(Bucket=self._bucket, Key=self._full_key(path))
            return True
        except self._s3.exceptions.ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    async def delete(self, path: str) -> None:
        self._s3.delete_object(Bucket=self._bucket, Key=self._full_key(path))

    async def list_dir(self, path: str) -> list[str]:
        """List objects under a prefix (simulates directory listing)."""
        prefix = self._full_key(path)
        if not prefix.endswith("/"):
            prefix += "/"

        response = self._s3.list_objects_v2(
            Bucket=self._bucket, Prefix=prefix, Delimiter="/"
        )

        items: list[str] = []
        for obj in response.get("Contents", []):
            name = obj["Key"][len(prefix):]
            if name:
                items.append(name)
        for cp in response.get("CommonPrefixes", []):
            dir_name = cp["Prefix"][len(prefix):].rstrip("/")
            if dir_name:
                items.append(dir_name + "/")
        return sorted(items)
