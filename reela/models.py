"""SQLAlchemy 2.0 ORM models and job lifecycle types.

This module contains the SQLAlchemy model for persisted video artifacts and
the in-memory job handle the generation controller drives through its
state machine. All ORM columns use the Mapped[type] annotation pattern
required by SQLAlchemy 2.0.

Chaining:
    A video extended at its start or end produces a new video whose
    ``parent_id`` is the parent's ``file_id`` and whose ``chain_order`` is a
    signed position relative to the parent (implicit 0). Prepends count down
    from -1, appends count up from 1.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from reela.exceptions import InvalidStateTransitionError


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class JobState(enum.Enum):
    """Lifecycle of one generation job.

    Flow:
        submitted → polling → succeeded | failed | timed_out | cancelled

    Submission failures go straight from submitted to failed; a request
    cancelled before the first poll goes from submitted to cancelled.
    """

    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


JOB_STATE_TRANSITIONS: dict[JobState, list[JobState]] = {
    JobState.SUBMITTED: [JobState.POLLING, JobState.FAILED, JobState.CANCELLED],
    JobState.POLLING: [
        JobState.SUCCEEDED,
        JobState.FAILED,
        JobState.TIMED_OUT,
        JobState.CANCELLED,
    ],
    JobState.SUCCEEDED: [],
    JobState.FAILED: [],
    JobState.TIMED_OUT: [],
    JobState.CANCELLED: [],
}

TERMINAL_JOB_STATES = frozenset(
    {JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED}
)


class ArtifactStatus(enum.Enum):
    """Availability of a stored artifact."""

    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class ExtensionSide(enum.Enum):
    """Side of a parent video a new clip is attached to."""

    START = "start"
    END = "end"


@dataclass
class JobHandle:
    """Opaque reference to a job on the generation service plus its status.

    Owned by exactly one generation controller for the lifetime of one
    request. ``operation`` is the raw object returned by the service SDK and
    is passed back to it unchanged on every poll.

    Attributes:
        name: Service-assigned job identifier.
        done: Whether the service reports the job as finished.
        error: Error payload the service attached to a finished job.
        result_uri: Locator of the generated video, when one was produced.
        result_mime_type: Content type reported for the generated video.
        state: Lifecycle state, advanced only through :meth:`transition_to`.
    """

    name: str
    done: bool = False
    error: Any = None
    result_uri: str | None = None
    result_mime_type: str | None = None
    operation: Any = None
    state: JobState = JobState.SUBMITTED
    history: list[JobState] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES

    def transition_to(self, new_state: JobState) -> None:
        """Advance the lifecycle state.

        Raises:
            InvalidStateTransitionError: If ``new_state`` is not reachable
                from the current state.
        """
        allowed = JOB_STATE_TRANSITIONS.get(self.state, [])
        if new_state not in allowed:
            raise InvalidStateTransitionError(
                f"Invalid transition: {self.state.value} → {new_state.value}",
                from_state=self.state,
                to_state=new_state,
            )
        self.history.append(self.state)
        self.state = new_state

    def refresh_from(self, polled: "JobHandle") -> None:
        """Copy service-reported fields from a freshly polled handle."""
        self.done = polled.done
        self.error = polled.error
        self.result_uri = polled.result_uri
        self.result_mime_type = polled.result_mime_type
        self.operation = polled.operation


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Video(Base):
    """Persisted metadata for a generated video owned by an authenticated user.

    Anonymous generations are never written here; they live only in the
    object store under a short TTL.

    Attributes:
        id: Internal UUID primary key.
        file_id: Object store key of the video bytes.
        uri: Object store locator (gs://bucket/file_id).
        download_uri: Long-lived signed read URL.
        prompt: Prompt that produced the video (after audio context was added).
        format: Content type of the stored bytes.
        file_size: Size of the stored bytes.
        duration: Requested clip duration in seconds.
        model: Generation model identifier.
        status: processing | ready | failed.
        user_id: Owner identifier from the session layer.
        author: Owner display name (denormalized).
        is_temporary: Always False for persisted rows; kept for parity with
            the wire representation.
        expires_at: Expiry of the backing object, if any.
        parent_id: ``file_id`` of the video this one extends.
        chain_order: Signed position relative to the parent.
    """

    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    file_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    uri: Mapped[str] = mapped_column(Text, nullable=False)
    download_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    format: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ArtifactStatus.PROCESSING.value
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    author: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_temporary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    parent_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    chain_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_videos_user_id", "user_id"),
        UniqueConstraint("parent_id", "chain_order", name="uq_videos_parent_id_chain_order"),
    )

    def __repr__(self) -> str:
        return (
            f"<Video(id={self.id!r}, file_id={self.file_id!r}, "
            f"parent_id={self.parent_id!r}, chain_order={self.chain_order!r})>"
        )
