# src/storage/blob_factory.py - v1
"""Factory: instantiate the artifact blob store from configuration."""

from __future__ import annotations

from dialectica.config.settings import Settings
from dialectica.core.errors import ConfigurationError
from dialectica.storage.base_blob_store import BaseBlobStore
from dialectica.storage.local_blob_store import LocalBlobStore


def create_blob_store(settings: Settings) -> BaseBlobStore:
    """Create the blob store selected by ARTIFACT_STORE.

    Raises:
        ConfigurationError: If the store type is not supported.
    """
    if settings.artifact_store == "local":
        return LocalBlobStore(settings.artifact_root)

    if settings.artifact_store == "s3":
        from dialectica.storage.s3_blob_store import S3BlobStore

        return S3BlobStore(
            bucket=settings.artifact_s3_bucket,
            prefix=settings.artifact_s3_prefix,
            region=settings.artifact_s3_region or None,
        )

    raise ConfigurationError(f"Unsupported artifact store: {settings.artifact_store!r}")
