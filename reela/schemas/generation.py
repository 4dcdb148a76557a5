"""Pydantic schemas for generation requests, artifacts and stream events.

Wire format uses camelCase field names (``downloadUri``, ``statusCode``,
``chainOrder``); Python code uses snake_case. All schemas use Pydantic v2
syntax with model_config.

Stream events form a closed sum type:

    StreamEvent = ProgressEvent | TerminalEvent
    TerminalEvent = CompleteEvent | ErrorEvent | CancelledEvent

Exactly one terminal event ends every stream.
"""

from datetime import datetime
from typing import ClassVar, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from reela.services.error_classifier import ClassifiedError, ErrorKind

ProgressStatus = Literal[
    "initiating", "uploading", "generating", "retrieving", "ready", "downloading"
]
AttachmentKindName = Literal["image", "audio", "video"]
SideName = Literal["start", "end"]


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Serialize to the JSON shape sent to clients (camelCase, no nulls)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Artifact(CamelModel):
    """A generated video ready to be served by locator.

    Created in memory right after retrieval from the generation service.
    Persisted to the record store only when an owner is attributable; always
    backed by an object in the object store.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: UUID
    file_id: str
    uri: str
    download_uri: str | None = None
    download_expires_at: datetime | None = None
    prompt: str
    format: str = Field(..., description="Content type of the stored bytes")
    file_size: int = Field(..., ge=0)
    duration: int | None = None
    model: str | None = None
    status: Literal["processing", "ready", "failed"] = "processing"
    is_temporary: bool = False
    expires_at: datetime | None = None
    user_id: str | None = None
    author: str | None = None
    parent_id: str | None = None
    chain_order: int | None = None
    created_at: datetime | None = None


class ProgressEvent(CamelModel):
    """Non-terminal progress notification."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    terminal: ClassVar[bool] = False

    status: ProgressStatus
    progress: int = Field(..., ge=0, le=100)
    poll_count: int | None = None


class CompleteEvent(CamelModel):
    """Terminal event carrying the stored artifact."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    terminal: ClassVar[bool] = True

    status: Literal["complete"] = "complete"
    progress: Literal[100] = 100
    video: Artifact


class ErrorEvent(CamelModel):
    """Terminal event describing a classified failure."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    terminal: ClassVar[bool] = True

    status: Literal["error"] = "error"
    error: str
    type: ErrorKind
    status_code: int
    progress: int | None = None

    @classmethod
    def from_classified(cls, classified: ClassifiedError, prefix: str = "") -> "ErrorEvent":
        return cls(
            error=f"{prefix}{classified.message}",
            type=classified.kind,
            status_code=classified.status_code,
        )


class CancelledEvent(CamelModel):
    """Terminal event emitted when the caller cancels before completion."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    terminal: ClassVar[bool] = True

    status: Literal["cancelled"] = "cancelled"
    message: str = "Request cancelled by client"


TerminalEvent = CompleteEvent | ErrorEvent | CancelledEvent
StreamEvent = ProgressEvent | TerminalEvent


class AttachmentIn(CamelModel):
    """Reference attachment supplied with a generation request.

    Exactly one of ``pointer`` (bytes previously buffered in the attachment
    store) or ``url`` (remote locator) must be set.
    """

    kind: AttachmentKindName
    mime_type: str = Field(..., min_length=3, max_length=100)
    pointer: str | None = None
    url: str | None = None


class GenerateVideoRequest(CamelModel):
    """Body of POST /api/v1/videos/generate."""

    prompt: str = Field(..., max_length=4000)
    attachment: AttachmentIn | None = None
    model: str | None = None
    duration_seconds: int | None = None
    parent_id: str | None = None
    side: SideName | None = None


class ErrorResponse(CamelModel):
    """Body of a non-streaming failure response."""

    error: str
    type: ErrorKind
    status_code: int
    timestamp: datetime
