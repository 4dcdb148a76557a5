"""Storage placement for generated videos.

Decides where a finished video lives based on whether the request has an
owner:

    owner present   upload permanently, long-lived signed URL, insert record
    anonymous       upload with TTL metadata, short-lived signed URL, no record

Upload or signing failures are fatal and raise ArtifactStorageError: an
artifact without a reachable backing object is useless to the caller.
Record store failures propagate unchanged and are classified by the caller;
the uploaded object is deleted first so no unrecorded permanent object is
left behind.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import structlog

from reela.config import get_permanent_signed_url_minutes, get_temporary_ttl_minutes
from reela.exceptions import ArtifactStorageError
from reela.models import ArtifactStatus, utcnow
from reela.schemas.generation import Artifact

log = structlog.get_logger(__name__)


class ObjectStore(Protocol):
    async def upload(
        self,
        file_id: str,
        data: bytes,
        content_type: str,
        temporary: bool,
        expires_at: datetime | None = None,
    ) -> str: ...

    async def signed_url(self, file_id: str, ttl_minutes: int) -> str: ...

    async def delete(self, file_id: str) -> None: ...


class RecordStore(Protocol):
    async def insert_artifact(self, artifact: Artifact) -> Artifact: ...


@dataclass(frozen=True)
class Owner:
    """Authenticated caller the artifact is attributed to."""

    user_id: str
    name: str | None = None


class ArtifactPlacement:
    """Uploads generated videos and records them when an owner exists.

    Attributes:
        objects: Object store for the video bytes.
        records: Record store for owned artifacts.
        temporary_ttl_minutes: Lifetime of anonymous artifacts.
        permanent_url_minutes: Lifetime of signed URLs for owned artifacts.
    """

    def __init__(
        self,
        objects: ObjectStore,
        records: RecordStore,
        temporary_ttl_minutes: int | None = None,
        permanent_url_minutes: int | None = None,
    ):
        self.objects = objects
        self.records = records
        self.temporary_ttl_minutes = temporary_ttl_minutes or get_temporary_ttl_minutes()
        self.permanent_url_minutes = (
            permanent_url_minutes or get_permanent_signed_url_minutes()
        )

    async def place(
        self,
        data: bytes,
        content_type: str,
        owner: Owner | None,
        *,
        prompt: str,
        model: str | None = None,
        duration: int | None = None,
        parent_id: str | None = None,
        chain_order: int | None = None,
    ) -> Artifact:
        """Store video bytes and build the artifact returned to the caller.

        Raises:
            ArtifactStorageError: If upload or signed URL issuance fails.
        """
        file_id = str(uuid.uuid4())
        temporary = owner is None
        now = utcnow()
        ttl_minutes = self.temporary_ttl_minutes if temporary else self.permanent_url_minutes
        expires_at = now + timedelta(minutes=self.temporary_ttl_minutes) if temporary else None

        try:
            uri = await self.objects.upload(
                file_id, data, content_type, temporary=temporary, expires_at=expires_at
            )
        except Exception as e:
            log.error("artifact_upload_failed", file_id=file_id, error=str(e))
            raise ArtifactStorageError(f"Failed to upload video {file_id}: {e}") from e

        try:
            download_uri = await self.objects.signed_url(file_id, ttl_minutes)
        except Exception as e:
            log.error("artifact_signing_failed", file_id=file_id, error=str(e))
            raise ArtifactStorageError(
                f"Failed to issue download URL for video {file_id}: {e}"
            ) from e

        artifact = Artifact(
            id=uuid.uuid4(),
            file_id=file_id,
            uri=uri,
            download_uri=download_uri,
            download_expires_at=now + timedelta(minutes=ttl_minutes),
            prompt=prompt,
            format=content_type,
            file_size=len(data),
            duration=duration,
            model=model,
            status=ArtifactStatus.READY.value,
            is_temporary=temporary,
            expires_at=expires_at,
            user_id=owner.user_id if owner else None,
            author=(owner.name or "Anonymous") if owner else None,
            parent_id=parent_id,
            chain_order=chain_order,
            created_at=now,
        )

        if temporary:
            log.info("temporary_artifact_placed", file_id=file_id, expires_at=expires_at.isoformat())
            return artifact

        try:
            stored = await self.records.insert_artifact(artifact)
        except Exception as e:
            log.error("artifact_record_failed", file_id=file_id, error=str(e))
            await self._discard(file_id)
            raise
        log.info("permanent_artifact_placed", file_id=file_id, user_id=owner.user_id)
        return stored

    async def _discard(self, file_id: str) -> None:
        try:
            await self.objects.delete(file_id)
        except Exception as e:
            log.warning("orphan_object_delete_failed", file_id=file_id, error=str(e))

