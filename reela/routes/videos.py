"""Video generation routes.

This module provides FastAPI routes for generating and listing videos:
- POST /api/v1/videos/generate - Generate a video (server-sent events)
- POST /api/v1/videos/generate/extend - Extend a video at its start or end
- GET /api/v1/videos - List the caller's videos
- GET /api/v1/videos/{video_id}/chain - A video and its extensions

Pattern:
- Validate and preprocess before streaming (failures → JSON error body)
- Stream progress events until exactly one terminal event
- Client disconnect sets the cancel signal
"""

import asyncio
import uuid
from contextlib import aclosing

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from reela.dependencies import (
    get_attachment_store,
    get_event_stream,
    get_owner,
    get_preprocessor,
    get_repository,
)
from reela.exceptions import AttachmentValidationError
from reela.models import ExtensionSide, utcnow
from reela.schemas.generation import Artifact, ErrorResponse, GenerateVideoRequest
from reela.services.artifact_repository import ArtifactRepository
from reela.services.artifact_storage import Owner
from reela.services.attachment_preprocessor import (
    AttachmentDescriptor,
    AttachmentPreprocessor,
    GenerationPayload,
    GenerationRequest,
)
from reela.services.attachment_store import AttachmentStore
from reela.services.error_classifier import ClassifiedError, classify_error
from reela.services.event_stream import GenerationEventStream, encode_sse
from reela.utils.logging import bind_request_context, clear_request_context

log = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/v1/videos", tags=["videos"])

DISCONNECT_CHECK_SECONDS = 1.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def classified_response(classified: ClassifiedError) -> JSONResponse:
    """Render a classified failure as a JSON error body."""
    body = ErrorResponse(
        error=classified.message,
        type=classified.kind,
        status_code=classified.status_code,
        timestamp=utcnow(),
    )
    return JSONResponse(status_code=classified.status_code, content=body.to_wire())


def error_response(error: Exception) -> JSONResponse:
    return classified_response(classify_error(error))


async def watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    """Set ``cancel`` once the client has gone away."""
    while not cancel.is_set():
        if await request.is_disconnected():
            log.info("client_disconnected")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_CHECK_SECONDS)


def event_stream_response(
    request: Request,
    events: GenerationEventStream,
    payload: GenerationPayload,
    owner: Owner | None,
) -> StreamingResponse:
    request_id = str(uuid.uuid4())

    async def event_source():
        cancel = asyncio.Event()
        watcher = asyncio.create_task(watch_disconnect(request, cancel))
        bind_request_context(
            request_id=request_id,
            model=payload.model,
            is_extension=payload.is_extension,
        )
        try:
            async with aclosing(events.stream(payload, owner, cancel)) as stream:
                async for event in stream:
                    yield encode_sse(event)
        finally:
            watcher.cancel()
            clear_request_context()

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/generate")
async def generate_video(
    body: GenerateVideoRequest,
    request: Request,
    preprocessor: AttachmentPreprocessor = Depends(get_preprocessor),
    events: GenerationEventStream = Depends(get_event_stream),
    owner: Owner | None = Depends(get_owner),
):
    """Generate a video from a prompt and optional attachment.

    Returns:
        200 text/event-stream: progress events ending in complete, error or cancelled
        4xx/5xx JSON: request rejected before streaming started
    """
    attachment = None
    if body.attachment is not None:
        attachment = AttachmentDescriptor(
            kind=body.attachment.kind,
            mime_type=body.attachment.mime_type,
            pointer=body.attachment.pointer,
            url=body.attachment.url,
        )
    generation_request = GenerationRequest(
        prompt=body.prompt,
        attachment=attachment,
        model=body.model,
        duration_seconds=body.duration_seconds,
        parent_id=body.parent_id,
        side=ExtensionSide(body.side) if body.side else None,
    )

    try:
        payload = await preprocessor.prepare(generation_request)
    except Exception as e:
        log.warning("generation_request_rejected", error=str(e), error_type=type(e).__name__)
        return error_response(e)

    log.info(
        "generation_stream_started",
        model=payload.model,
        authenticated=owner is not None,
        attachment_kind=attachment.kind if attachment else None,
    )
    return event_stream_response(request, events, payload, owner)


@router.post("/generate/extend")
async def extend_video(
    request: Request,
    prompt: str = Form(...),
    reference_frame: UploadFile = File(..., alias="referenceFrame"),
    mime_type: str = Form(..., alias="mimeType"),
    side: str = Form(...),
    video_id: str = Form(..., alias="videoId"),
    store: AttachmentStore = Depends(get_attachment_store),
    preprocessor: AttachmentPreprocessor = Depends(get_preprocessor),
    events: GenerationEventStream = Depends(get_event_stream),
    owner: Owner | None = Depends(get_owner),
):
    """Generate a clip that extends ``videoId`` at its start or end.

    The reference frame (a still taken from the parent's first or last
    frame) seeds the generation.
    """
    try:
        extension_side = ExtensionSide(side)
    except ValueError:
        return error_response(
            AttachmentValidationError(f"Invalid side: {side!r} (expected 'start' or 'end')")
        )

    data = await reference_frame.read()
    pointer = None
    try:
        pointer = store.put(data, mime_type, reference_frame.filename or "")
        payload = await preprocessor.prepare(
            GenerationRequest(
                prompt=prompt,
                attachment=AttachmentDescriptor(kind="image", mime_type=mime_type, pointer=pointer),
                parent_id=video_id,
                side=extension_side,
            )
        )
    except Exception as e:
        log.warning("extension_request_rejected", error=str(e), error_type=type(e).__name__)
        return error_response(e)
    finally:
        if pointer is not None:
            store.delete(pointer)

    log.info(
        "extension_stream_started",
        parent_video_id=video_id,
        side=extension_side.value,
        authenticated=owner is not None,
    )
    return event_stream_response(request, events, payload, owner)


@router.get("")
async def list_videos(
    repository: ArtifactRepository = Depends(get_repository),
    owner: Owner | None = Depends(get_owner),
    limit: int = 50,
):
    """List persisted videos, newest first, narrowed to the caller when known."""
    videos = await repository.list_artifacts(
        user_id=owner.user_id if owner else None, limit=max(1, min(limit, 200))
    )
    return JSONResponse(content=[Artifact.model_validate(v).to_wire() for v in videos])


@router.get("/{video_id}/chain")
async def get_chain(
    video_id: str,
    repository: ArtifactRepository = Depends(get_repository),
):
    """Return a video followed by its extensions in chain order."""
    chain = await repository.list_chain(video_id)
    if not chain:
        raise HTTPException(status_code=404, detail="Video not found")
    return JSONResponse(content=[Artifact.model_validate(v).to_wire() for v in chain])
