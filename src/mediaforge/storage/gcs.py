"""Google Cloud Storage backend."""

import asyncio
from datetime import timedelta
from typing import Optional

from google.cloud import storage

from mediaforge.core.config import settings
from mediaforge.models.assembly import StoredObject
from mediaforge.services.assembly.exceptions import StorageError
from mediaforge.storage.base import ObjectStorage


class GCSObjectStorage(ObjectStorage):
    """Google Cloud Storage backend.

    The client library is blocking, so every call is moved off the event
    loop with ``asyncio.to_thread``.
    """

    def __init__(self):
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not settings.GCS_BUCKET_NAME:
                raise ValueError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=settings.GCP_PROJECT_ID or None)
            self._bucket = self._client.bucket(settings.GCS_BUCKET_NAME)

        return self._bucket

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Upload object bytes in a single request."""
        blob_path = self.normalize_key(key)
        blob = self._get_bucket().blob(blob_path)

        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        except Exception as e:
            raise StorageError(f"Failed to upload gs://{settings.GCS_BUCKET_NAME}/{blob_path}: {e}") from e

        return StoredObject(key=blob_path, url=blob.public_url)

    async def get(self, key: str) -> StoredObject:
        """Generate a V4 signed GET URL for an object."""
        blob_path = self.normalize_key(key)
        blob = self._get_bucket().blob(blob_path)

        try:
            signed_url = await asyncio.to_thread(
                blob.generate_signed_url,
                version="v4",
                expiration=timedelta(minutes=settings.SIGNED_URL_EXPIRATION_MINUTES),
                method="GET",
            )
        except Exception as e:
            raise StorageError(f"Failed to sign gs://{settings.GCS_BUCKET_NAME}/{blob_path}: {e}") from e

        return StoredObject(key=blob_path, url=signed_url)

    def get_backend_name(self) -> str:
        return "gcs"
