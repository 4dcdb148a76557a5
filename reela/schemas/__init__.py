"""Pydantic schemas for validation and serialization."""

from reela.schemas.generation import (
    Artifact,
    AttachmentIn,
    CancelledEvent,
    CompleteEvent,
    ErrorEvent,
    ErrorResponse,
    GenerateVideoRequest,
    ProgressEvent,
    StreamEvent,
    TerminalEvent,
)

__all__ = [
    "Artifact",
    "AttachmentIn",
    "CancelledEvent",
    "CompleteEvent",
    "ErrorEvent",
    "ErrorResponse",
    "GenerateVideoRequest",
    "ProgressEvent",
    "StreamEvent",
    "TerminalEvent",
]
