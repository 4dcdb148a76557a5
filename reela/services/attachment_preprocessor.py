"""Attachment preprocessing for generation requests.

Turns a caller's prompt plus an optional reference attachment into a
validated :class:`GenerationPayload` ready for submission.

Pipeline:
    1. Resolve the attachment bytes from the attachment store (pointer) or a
       remote host (url). Exactly one locator must be given.
    2. Enforce the per-kind size ceiling; empty payloads are always rejected.
    3. Audio: transcribe and prefix the transcript to the prompt. Failures
       degrade to the original prompt. Audio is never forwarded as seed media.
    4. Video: remap MIME types the generation service handles poorly.
    5. Coerce the requested duration into the model's supported set.

Usage:
    preprocessor = AttachmentPreprocessor(store, transcriber)
    payload = await preprocessor.prepare(request)
"""

from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reela.config import get_default_generation_model
from reela.constants import ATTACHMENT_SIZE_LIMITS, MB, MODEL_DURATIONS, VIDEO_MIME_REMAP
from reela.exceptions import AttachmentValidationError, UpstreamFetchError
from reela.models import ExtensionSide
from reela.services.attachment_store import AttachmentStore

log = structlog.get_logger(__name__)

AUDIO_CONTEXT_HEADER = "Audio context (transcribed from the attached audio):"


class Transcriber(Protocol):
    async def transcribe(self, data: bytes, mime_type: str) -> str | None: ...


@dataclass(frozen=True)
class AttachmentDescriptor:
    """Reference attachment as supplied by the caller.

    Attributes:
        kind: "image", "audio" or "video".
        mime_type: Declared content type.
        pointer: Attachment store pointer to previously buffered bytes.
        url: Remote locator to fetch the bytes from.
    """

    kind: str
    mime_type: str
    pointer: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class GenerationRequest:
    """Immutable generation input before preprocessing."""

    prompt: str
    attachment: AttachmentDescriptor | None = None
    model: str | None = None
    duration_seconds: int | None = None
    parent_id: str | None = None
    side: ExtensionSide | None = None


@dataclass(frozen=True)
class SeedMedia:
    """Image or video bytes forwarded to the generation service."""

    data: bytes
    mime_type: str
    kind: str


@dataclass(frozen=True)
class GenerationPayload:
    """Validated submission for the generation job controller.

    ``parent_id`` and ``side`` are set together for chain extensions.
    """

    prompt: str
    model: str
    duration_seconds: int
    seed_media: SeedMedia | None = None
    parent_id: str | None = None
    side: ExtensionSide | None = None

    @property
    def is_extension(self) -> bool:
        return self.parent_id is not None


def resolve_duration(model: str, requested: int | None, has_image: bool) -> int:
    """Coerce a requested duration into the set the model supports.

    Image-seeded generation is pinned to the model's maximum. Otherwise a
    supported request is kept and anything else falls back to the maximum.

    Raises:
        AttachmentValidationError: If the model is unknown.
    """
    supported = MODEL_DURATIONS.get(model)
    if supported is None:
        raise AttachmentValidationError(f"Unsupported generation model: {model}")
    longest = max(supported)
    if has_image:
        return longest
    if requested in supported:
        return requested
    if requested is not None:
        log.info("duration_coerced", model=model, requested=requested, duration=longest)
    return longest


def compose_prompt(prompt: str, transcript: str | None) -> str:
    """Prefix a non-empty audio transcript to the user prompt."""
    if not transcript or not transcript.strip():
        return prompt
    return f"{AUDIO_CONTEXT_HEADER}\n{transcript.strip()}\n\nUser prompt: {prompt}"


def validate_size(kind: str, size: int) -> None:
    """Reject empty payloads and payloads above the kind's ceiling.

    Raises:
        AttachmentValidationError: On an empty or oversized payload.
    """
    if size == 0:
        raise AttachmentValidationError(f"{kind} file is empty (0 bytes)")
    limit = ATTACHMENT_SIZE_LIMITS[kind]
    if size > limit:
        raise AttachmentValidationError(
            f"{kind} file too large: {size / MB:.2f}MB (max {limit // MB}MB)"
        )


class AttachmentPreprocessor:
    """Builds generation payloads from requests.

    Attributes:
        store: Buffer holding attachments referenced by pointer.
        transcriber: Audio transcription capability.
        http_client: Client used to fetch attachments referenced by URL.
    """

    def __init__(
        self,
        store: AttachmentStore,
        transcriber: Transcriber,
        http_client: httpx.AsyncClient | None = None,
        default_model: str | None = None,
    ):
        self.store = store
        self.transcriber = transcriber
        self.http_client = http_client or httpx.AsyncClient(timeout=60.0, follow_redirects=True)
        self.default_model = default_model or get_default_generation_model()

    async def prepare(self, request: GenerationRequest) -> GenerationPayload:
        """Validate a request and resolve its attachment.

        Raises:
            AttachmentValidationError: Missing prompt, bad locator, bad size,
                unknown kind or unsupported model.
            UpstreamFetchError: Remote attachment could not be fetched.
        """
        if not request.prompt or not request.prompt.strip():
            raise AttachmentValidationError("Invalid request: prompt is required")
        if (request.parent_id is None) != (request.side is None):
            raise AttachmentValidationError(
                "Invalid request: parent_id and side must be given together"
            )

        model = request.model or self.default_model
        prompt = request.prompt
        seed: SeedMedia | None = None

        attachment = request.attachment
        if attachment is not None:
            if attachment.kind not in ATTACHMENT_SIZE_LIMITS:
                raise AttachmentValidationError(
                    f"Unsupported attachment kind: {attachment.kind}"
                )
            data, mime_type = await self._load(attachment)
            validate_size(attachment.kind, len(data))

            if attachment.kind == "audio":
                prompt = compose_prompt(prompt, await self._transcribe(data, mime_type))
            elif attachment.kind == "video":
                remapped = VIDEO_MIME_REMAP.get(mime_type, mime_type)
                if remapped != mime_type:
                    log.info("video_mime_remapped", original=mime_type, remapped=remapped)
                seed = SeedMedia(data=data, mime_type=remapped, kind="video")
            else:
                seed = SeedMedia(data=data, mime_type=mime_type, kind="image")

        duration = resolve_duration(
            model,
            request.duration_seconds,
            has_image=seed is not None and seed.kind == "image",
        )

        log.info(
            "generation_payload_prepared",
            model=model,
            duration_seconds=duration,
            attachment_kind=attachment.kind if attachment else None,
            is_extension=request.parent_id is not None,
        )
        return GenerationPayload(
            prompt=prompt,
            model=model,
            duration_seconds=duration,
            seed_media=seed,
            parent_id=request.parent_id,
            side=request.side,
        )

    async def _load(self, attachment: AttachmentDescriptor) -> tuple[bytes, str]:
        has_pointer = bool(attachment.pointer)
        has_url = bool(attachment.url)
        if has_pointer == has_url:
            raise AttachmentValidationError(
                "Attachment must have exactly one of pointer or url"
            )

        if has_pointer:
            stored = self.store.get(attachment.pointer)
            if stored is None:
                raise AttachmentValidationError(
                    f"Attachment not found or expired: {attachment.pointer}"
                )
            return stored.data, attachment.mime_type or stored.content_type

        return await self.fetch_remote(attachment.url, attachment.mime_type), attachment.mime_type

    async def fetch_remote(self, url: str, expected_type: str) -> bytes:
        """Download a remote attachment.

        Transport errors are retried up to three times; HTTP error statuses
        are not.

        Raises:
            UpstreamFetchError: On any failure to obtain the bytes.
        """
        log.info("attachment_fetch_started", url=url)
        try:
            response = await self._get_with_retry(url)
        except httpx.HTTPError as e:
            log.warning("attachment_fetch_failed", url=url, error=str(e))
            raise UpstreamFetchError(
                f"Failed to fetch attachment at url: {url}", url=url
            ) from e

        if response.status_code >= 400:
            log.warning("attachment_fetch_failed", url=url, status_code=response.status_code)
            raise UpstreamFetchError(
                f"Failed to fetch attachment at url: {url}, status: {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type")
        if content_type and not content_type.startswith(expected_type.split("/")[0]):
            log.warning(
                "attachment_content_type_mismatch", expected=expected_type, actual=content_type
            )

        log.info("attachment_fetched", url=url, size=len(response.content))
        return response.content

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    async def _get_with_retry(self, url: str) -> httpx.Response:
        return await self.http_client.get(url)

    async def _transcribe(self, data: bytes, mime_type: str) -> str | None:
        try:
            text = await self.transcriber.transcribe(data, mime_type)
        except Exception as e:
            log.warning(
                "audio_transcription_failed",
                mime_type=mime_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        if not text:
            log.info("audio_transcription_empty", mime_type=mime_type)
        return text
