"""Google Cloud Storage client for generated videos.

Objects are keyed by ``file_id`` at the bucket root. Every object carries
``is-temporary`` metadata; temporary objects also carry ``expires-at`` (ISO
8601, UTC), which the temporary artifact sweeper reads to delete expired
anonymous artifacts.

Architecture Pattern:
    Thin SDK wrapper - the google-cloud-storage SDK is blocking, so every
    call runs in a worker thread via ``asyncio.to_thread``.

Dependencies:
    - google-cloud-storage: uploads, downloads, signed URLs, listing

Usage:
    from reela.clients.object_storage import ObjectStorageClient

    storage = ObjectStorageClient("reela-videos")
    uri = await storage.upload(file_id, data, "video/mp4", temporary=True, expires_at=deadline)
    url = await storage.signed_url(file_id, ttl_minutes=30)
"""

import asyncio
from datetime import datetime, timedelta

import structlog
from google.cloud import storage

from reela.models import utcnow

log = structlog.get_logger(__name__)

# V4 signatures cannot outlive seven days; longer URLs fall back to V2
V4_MAX_EXPIRATION = timedelta(days=7)

META_IS_TEMPORARY = "is-temporary"
META_EXPIRES_AT = "expires-at"


class ObjectStorageClient:
    """Async facade over a single GCS bucket.

    Attributes:
        bucket_name: Target bucket.
        client: google-cloud-storage client.
    """

    def __init__(
        self,
        bucket_name: str,
        credentials_info: dict | None = None,
        client: storage.Client | None = None,
    ) -> None:
        self.bucket_name = bucket_name
        if client is not None:
            self.client = client
        elif credentials_info:
            self.client = storage.Client.from_service_account_info(credentials_info)
        else:
            self.client = storage.Client()
        self._bucket = self.client.bucket(bucket_name)

    def locator(self, file_id: str) -> str:
        return f"gs://{self.bucket_name}/{file_id}"

    async def upload(
        self,
        file_id: str,
        data: bytes,
        content_type: str,
        temporary: bool,
        expires_at: datetime | None = None,
    ) -> str:
        """Upload bytes and return the object's gs:// locator."""
        blob = self._bucket.blob(file_id)
        metadata = {META_IS_TEMPORARY: "true" if temporary else "false"}
        if expires_at is not None:
            metadata[META_EXPIRES_AT] = expires_at.isoformat()
        blob.metadata = metadata
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        log.info(
            "object_uploaded",
            file_id=file_id,
            bucket=self.bucket_name,
            size=len(data),
            temporary=temporary,
        )
        return self.locator(file_id)

    async def signed_url(self, file_id: str, ttl_minutes: int) -> str:
        """Issue a signed read URL valid for ``ttl_minutes``."""
        expiration = timedelta(minutes=ttl_minutes)
        version = "v4" if expiration <= V4_MAX_EXPIRATION else "v2"
        if version == "v2":
            # V2 takes an absolute expiry
            expiration = utcnow() + expiration
        blob = self._bucket.blob(file_id)
        return await asyncio.to_thread(
            blob.generate_signed_url, expiration=expiration, method="GET", version=version
        )

    async def download(self, file_id: str) -> bytes:
        blob = self._bucket.blob(file_id)
        return await asyncio.to_thread(blob.download_as_bytes)

    async def delete(self, file_id: str) -> None:
        blob = self._bucket.blob(file_id)
        await asyncio.to_thread(blob.delete)
        log.info("object_deleted", file_id=file_id, bucket=self.bucket_name)

    async def delete_expired_temporary(self, now: datetime | None = None) -> int:
        """Delete temporary objects whose ``expires-at`` has passed.

        Objects with unparseable expiry metadata are skipped and logged.

        Returns:
            Number of objects deleted.
        """
        now = now or utcnow()

        def _sweep() -> int:
            deleted = 0
            for blob in self.client.list_blobs(self.bucket_name):
                metadata = blob.metadata or {}
                if metadata.get(META_IS_TEMPORARY) != "true":
                    continue
                raw_expiry = metadata.get(META_EXPIRES_AT)
                if not raw_expiry:
                    continue
                try:
                    expires_at = datetime.fromisoformat(raw_expiry)
                except ValueError:
                    log.warning("object_expiry_unparseable", file_id=blob.name, value=raw_expiry)
                    continue
                if expires_at <= now:
                    blob.delete()
                    deleted += 1
            return deleted

        deleted = await asyncio.to_thread(_sweep)
        log.info("temporary_objects_swept", bucket=self.bucket_name, deleted=deleted)
        return deleted
