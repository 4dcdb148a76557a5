"""Record store for persisted video artifacts.

Only artifacts attributable to an authenticated owner are written here.
Query helpers take an ``AsyncSession``; :class:`ArtifactRepository` wraps
them in short transactions so no connection is held across calls to the
generation service or the object store.

Chain positions are resolved before the video is uploaded, so another
extension of the same parent may claim the position first. The
``(parent_id, chain_order)`` unique constraint rejects the second insert,
which then moves one step past the new extreme and tries again.
"""

import asyncio
import uuid
from collections.abc import Sequence

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from reela.models import ExtensionSide, Video
from reela.schemas.generation import Artifact
from reela.services.chain_order import next_chain_order

log = structlog.get_logger(__name__)

DEFAULT_LIST_LIMIT = 50
CHAIN_INSERT_ATTEMPTS = 5


def _id_filter(artifact_id: str):
    try:
        parsed = uuid.UUID(str(artifact_id))
    except ValueError:
        return Video.file_id == artifact_id
    return or_(Video.id == parsed, Video.file_id == str(artifact_id))


async def find_video(session: AsyncSession, artifact_id: str) -> Video | None:
    """Find a video by primary key or by file id."""
    result = await session.execute(select(Video).where(_id_filter(artifact_id)).limit(1))
    return result.scalar_one_or_none()


async def find_extreme_chain_order(
    session: AsyncSession, parent_file_id: str, side: ExtensionSide
) -> int | None:
    """Return max (end) or min (start) chain order among a parent's children.

    Only children on the requested side of the parent count: positive
    orders for END, negative orders for START. None when there are none.
    """
    if side is ExtensionSide.END:
        stmt = select(func.max(Video.chain_order)).where(
            Video.parent_id == parent_file_id, Video.chain_order > 0
        )
    else:
        stmt = select(func.min(Video.chain_order)).where(
            Video.parent_id == parent_file_id, Video.chain_order < 0
        )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


class ArtifactRepository:
    """Short-transaction access to the ``videos`` table.

    Attributes:
        session_factory: Factory producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._chain_lock = asyncio.Lock()

    async def insert_artifact(self, artifact: Artifact) -> Artifact:
        """Persist an artifact and return the stored record.

        A chained artifact whose position was taken in the meantime is
        re-positioned on the same side of its parent, so the returned
        ``chain_order`` may differ from the requested one.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the insert fails.
        """
        if artifact.parent_id is None or not artifact.chain_order:
            video = await self._insert(artifact)
        else:
            async with self._chain_lock:
                video = await self._insert_chained(artifact)

        log.info(
            "artifact_inserted",
            artifact_id=str(video.id),
            file_id=video.file_id,
            user_id=video.user_id,
            parent_id=video.parent_id,
            chain_order=video.chain_order,
        )
        stored = Artifact.model_validate(video)
        # download expiry is not a column; carry it through from the input
        return stored.model_copy(update={"download_expires_at": artifact.download_expires_at})

    async def _insert_chained(self, artifact: Artifact) -> Video:
        side = ExtensionSide.END if artifact.chain_order > 0 else ExtensionSide.START
        candidate = artifact
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(IntegrityError),
            stop=stop_after_attempt(CHAIN_INSERT_ATTEMPTS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    extreme = await self.get_extreme_chain_order(artifact.parent_id, side)
                    candidate = artifact.model_copy(
                        update={"chain_order": next_chain_order(extreme, side)}
                    )
                    log.warning(
                        "chain_order_taken",
                        file_id=artifact.file_id,
                        parent_id=artifact.parent_id,
                        requested=artifact.chain_order,
                        chain_order=candidate.chain_order,
                    )
                return await self._insert(candidate)

    async def _insert(self, artifact: Artifact) -> Video:
        video = Video(
            id=artifact.id,
            file_id=artifact.file_id,
            uri=artifact.uri,
            download_uri=artifact.download_uri,
            prompt=artifact.prompt,
            format=artifact.format,
            file_size=artifact.file_size,
            duration=artifact.duration,
            model=artifact.model,
            status=artifact.status,
            user_id=artifact.user_id,
            author=artifact.author,
            is_temporary=artifact.is_temporary,
            expires_at=artifact.expires_at,
            parent_id=artifact.parent_id,
            chain_order=artifact.chain_order,
        )
        if artifact.created_at is not None:
            video.created_at = artifact.created_at

        async with self.session_factory() as session, session.begin():
            session.add(video)
        return video

    async def get_artifact(self, artifact_id: str) -> Video | None:
        async with self.session_factory() as session:
            return await find_video(session, artifact_id)

    async def get_extreme_chain_order(
        self, parent_file_id: str, side: ExtensionSide
    ) -> int | None:
        async with self.session_factory() as session:
            return await find_extreme_chain_order(session, parent_file_id, side)

    async def list_artifacts(
        self, user_id: str | None = None, limit: int = DEFAULT_LIST_LIMIT
    ) -> Sequence[Video]:
        """List persisted videos, newest first, optionally for one owner."""
        stmt = select(Video).order_by(Video.created_at.desc()).limit(limit)
        if user_id is not None:
            stmt = stmt.where(Video.user_id == user_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    async def list_chain(self, artifact_id: str) -> list[Video]:
        """Return a root video followed by its extensions, ordered by chain order.

        The root sits at its implicit position 0. Empty when the root is
        unknown.
        """
        async with self.session_factory() as session:
            root = await find_video(session, artifact_id)
            if root is None:
                return []
            result = await session.execute(
                select(Video).where(Video.parent_id == root.file_id)
            )
            members = [root, *result.scalars().all()]
        return sorted(
            members, key=lambda v: 0 if v is root else (v.chain_order or 0)
        )
