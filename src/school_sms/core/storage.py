"""
Blob Storage

The BlobStore protocol is everything the attachment ledger needs from an
object store. GCSBlobStore implements it on Google Cloud Storage; the
google-cloud-storage client is synchronous, so calls run in worker threads.

Provider errors surface as StorageUnavailableError.
"""

import asyncio
import logging
from datetime import timedelta
from typing import BinaryIO, Protocol

from google.cloud import storage

from school_sms.core.config import settings
from school_sms.core.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Operations the application performs against an object store."""

    async def sign_upload(
        self, bucket: str, path: str, ttl: timedelta, content_type: str | None = None
    ) -> str: ...

    async def sign_download(self, bucket: str, path: str, ttl: timedelta) -> str: ...

    async def delete(self, bucket: str, path: str) -> None: ...

    async def delete_prefix(self, bucket: str, prefix: str) -> int: ...

    async def upload(
        self, bucket: str, path: str, data: BinaryIO, content_type: str | None = None
    ) -> None: ...


class GCSBlobStore:
    """BlobStore backed by Google Cloud Storage with v4 signed URLs."""

    def __init__(self, client: storage.Client):
        self.client = client

    async def sign_upload(
        self, bucket: str, path: str, ttl: timedelta, content_type: str | None = None
    ) -> str:
        blob = self.client.bucket(bucket).blob(path)
        try:
            return await asyncio.to_thread(
                blob.generate_signed_url,
                version="v4",
                expiration=ttl,
                method="PUT",
                content_type=content_type,
            )
        except Exception as e:
            logger.error(f"Failed to sign upload URL for gs://{bucket}/{path}: {e}")
            raise StorageUnavailableError() from e

    async def sign_download(self, bucket: str, path: str, ttl: timedelta) -> str:
        blob = self.client.bucket(bucket).blob(path)
        try:
            return await asyncio.to_thread(
                blob.generate_signed_url,
                version="v4",
                expiration=ttl,
                method="GET",
            )
        except Exception as e:
            logger.error(f"Failed to sign download URL for gs://{bucket}/{path}: {e}")
            raise StorageUnavailableError() from e

    async def delete(self, bucket: str, path: str) -> None:
        try:
            await asyncio.to_thread(self.client.bucket(bucket).blob(path).delete)
        except Exception as e:
            raise StorageUnavailableError(f"Could not delete {path}.") from e

    async def delete_prefix(self, bucket: str, prefix: str) -> int:
        def _delete_all() -> int:
            count = 0
            for blob in self.client.list_blobs(bucket, prefix=prefix):
                blob.delete()
                count += 1
            return count

        try:
            deleted = await asyncio.to_thread(_delete_all)
        except Exception as e:
            logger.error(f"Failed to delete gs://{bucket}/{prefix}*: {e}")
            raise StorageUnavailableError(f"Could not delete files under {prefix}.") from e

        logger.info(f"Deleted {deleted} objects under gs://{bucket}/{prefix}")
        return deleted

    async def upload(
        self, bucket: str, path: str, data: BinaryIO, content_type: str | None = None
    ) -> None:
        blob = self.client.bucket(bucket).blob(path)
        try:
            # Streams from the file object; large files go up in resumable chunks
            await asyncio.to_thread(
                blob.upload_from_file, data, rewind=True, content_type=content_type
            )
        except Exception as e:
            logger.error(f"Failed to upload gs://{bucket}/{path}: {e}")
            raise StorageUnavailableError() from e


_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """
    FastAPI dependency returning the configured blob store.

    The GCS client is created on first use.

    Raises:
        StorageUnavailableError: If storage credentials are not configured
    """
    global _blob_store

    if _blob_store is None:
        try:
            if settings.gcp_credentials_file:
                client = storage.Client.from_service_account_json(
                    settings.gcp_credentials_file, project=settings.gcp_project_id
                )
            else:
                client = storage.Client(project=settings.gcp_project_id)
        except Exception as e:
            logger.error(f"Google Cloud Storage is not configured: {e}")
            raise StorageUnavailableError("File storage is not configured.") from e
        _blob_store = GCSBlobStore(client)

    return _blob_store
