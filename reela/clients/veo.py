"""Veo video generation client.

This module wraps the google-genai SDK's long-running video generation
operations behind the four calls the generation controller needs:

- ``submit``: start a job (optionally seeded with an image or video)
- ``poll``: refresh a job's status (idempotent)
- ``request_cancel``: best-effort cancel of a running job
- ``fetch_result_bytes``: download the generated video

Architecture Pattern:
    Simple SDK/HTTP wrapper - no retry logic (the controller's poll loop is
    the only retry-like behaviour; failures are classified by the caller).

Dependencies:
    - google-genai: Veo generation and operation polling (async client)
    - httpx: cancel endpoint and result download

Usage:
    from reela.clients.veo import VeoClient

    client = VeoClient(api_key)
    handle = await client.submit(payload)
    handle = await client.poll(handle)
    data, content_type = await client.fetch_result_bytes(handle.result_uri)
    await client.close()
"""

from typing import Any

import httpx
import structlog
from google import genai
from google.genai import types

from reela.constants import DEFAULT_VIDEO_CONTENT_TYPE
from reela.models import JobHandle
from reela.services.attachment_preprocessor import GenerationPayload

log = structlog.get_logger(__name__)

GENERATIVE_LANGUAGE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def handle_from_operation(operation: Any) -> JobHandle:
    """Build a JobHandle from a google-genai ``GenerateVideosOperation``.

    Missing response members are tolerated; a finished operation without a
    generated video yields ``result_uri=None``.
    """
    generated = _field(_field(operation, "response"), "generated_videos") or []
    video = _field(generated[0], "video") if generated else None
    return JobHandle(
        name=_field(operation, "name") or "",
        done=bool(_field(operation, "done")),
        error=_field(operation, "error"),
        result_uri=_field(video, "uri"),
        result_mime_type=_field(video, "mime_type"),
        operation=operation,
    )


class VeoClient:
    """Client for Veo long-running video generation jobs.

    Attributes:
        client: google-genai client (``client.aio`` is used for async calls)
        http: Async HTTP client for the cancel endpoint and result downloads
    """

    def __init__(
        self,
        api_key: str,
        client: genai.Client | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self.client = client or genai.Client(api_key=api_key)
        self.http = http or httpx.AsyncClient(timeout=120.0, follow_redirects=True)

    async def submit(self, payload: GenerationPayload) -> JobHandle:
        """Start a generation job.

        Args:
            payload: Validated generation payload.

        Returns:
            JobHandle in the SUBMITTED state.
        """
        image = None
        video = None
        seed = payload.seed_media
        if seed is not None and seed.kind == "image":
            image = types.Image(image_bytes=seed.data, mime_type=seed.mime_type)
        elif seed is not None:
            video = types.Video(video_bytes=seed.data, mime_type=seed.mime_type)

        operation = await self.client.aio.models.generate_videos(
            model=payload.model,
            prompt=payload.prompt,
            image=image,
            video=video,
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                duration_seconds=payload.duration_seconds,
            ),
        )
        handle = handle_from_operation(operation)
        log.info(
            "veo_job_submitted",
            job_name=handle.name,
            model=payload.model,
            duration_seconds=payload.duration_seconds,
            seed_kind=seed.kind if seed else None,
        )
        return handle

    async def poll(self, handle: JobHandle) -> JobHandle:
        """Fetch the latest status of a job."""
        operation = await self.client.aio.operations.get(handle.operation)
        return handle_from_operation(operation)

    async def request_cancel(self, handle: JobHandle) -> None:
        """Ask the service to cancel a running job.

        Raises:
            httpx.HTTPError: If the cancel request fails. Callers treat this
                as best-effort and only log it.
        """
        if not handle.name:
            return
        response = await self.http.post(
            f"{GENERATIVE_LANGUAGE_BASE_URL}/{handle.name}:cancel",
            headers={"x-goog-api-key": self._api_key},
        )
        response.raise_for_status()
        log.info("veo_job_cancel_requested", job_name=handle.name)

    async def fetch_result_bytes(self, uri: str) -> tuple[bytes, str]:
        """Download a generated video.

        Returns:
            Tuple of (bytes, content type). Content type falls back to
            video/mp4 when the service omits it.

        Raises:
            httpx.HTTPStatusError: If the download returns an HTTP error.
        """
        response = await self.http.get(uri, headers={"x-goog-api-key": self._api_key})
        response.raise_for_status()
        content_type = response.headers.get("content-type") or DEFAULT_VIDEO_CONTENT_TYPE
        content_type = content_type.split(";")[0].strip()
        if not content_type.startswith("video/"):
            content_type = DEFAULT_VIDEO_CONTENT_TYPE
        log.info("veo_result_downloaded", uri=uri, size=len(response.content))
        return response.content, content_type

    async def close(self) -> None:
        """Close HTTP client connection."""
        await self.http.aclose()
