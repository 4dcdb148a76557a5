"""Tests for attachment preprocessing.

Test Coverage:
- Locator validation (exactly one of pointer / url)
- Size ceilings per kind and empty payload rejection
- Audio transcription prefixing and graceful degradation
- Video MIME remapping
- Duration coercion per model
- Remote fetch via httpx (success, HTTP error, transport retry)
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from reela.constants import MB
from reela.exceptions import AttachmentValidationError, TranscriptionError, UpstreamFetchError
from reela.models import ExtensionSide
from reela.services.attachment_preprocessor import (
    AUDIO_CONTEXT_HEADER,
    AttachmentDescriptor,
    AttachmentPreprocessor,
    GenerationRequest,
    compose_prompt,
    resolve_duration,
)
from reela.services.attachment_store import AttachmentStore


def make_transport(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def transcriber():
    mock = AsyncMock()
    mock.transcribe = AsyncMock(return_value="A dog barks twice at 0:02.")
    return mock


@pytest.fixture
def preprocessor(attachment_store, transcriber):
    return AttachmentPreprocessor(
        attachment_store,
        transcriber,
        http_client=make_transport(lambda request: httpx.Response(404)),
        default_model="veo-3.1-generate-preview",
    )


class TestDuration:
    def test_supported_request_kept(self):
        assert resolve_duration("veo-3.1-generate-preview", 6, has_image=False) == 6

    def test_unsupported_request_falls_back_to_max(self):
        assert resolve_duration("veo-3.1-generate-preview", 5, has_image=False) == 8

    def test_missing_request_uses_max(self):
        assert resolve_duration("veo-2.0-generate-001", None, has_image=False) == 8

    def test_image_pins_to_max(self):
        """[P1] Image-seeded generation ignores the requested duration."""
        assert resolve_duration("veo-2.0-generate-001", 5, has_image=True) == 8

    def test_unknown_model_rejected(self):
        with pytest.raises(AttachmentValidationError, match="Unsupported generation model"):
            resolve_duration("veo-9", 4, has_image=False)


class TestComposePrompt:
    def test_transcript_prefixed(self):
        prompt = compose_prompt("make it dramatic", "Thunder rolls.")

        assert prompt.startswith(AUDIO_CONTEXT_HEADER)
        assert "Thunder rolls." in prompt
        assert prompt.endswith("User prompt: make it dramatic")

    @pytest.mark.parametrize("transcript", [None, "", "   \n"])
    def test_blank_transcript_leaves_prompt(self, transcript):
        assert compose_prompt("make it dramatic", transcript) == "make it dramatic"


class TestPrepareWithoutAttachment:
    @pytest.mark.asyncio
    async def test_prompt_only(self, preprocessor):
        payload = await preprocessor.prepare(GenerationRequest(prompt="cat surfing"))

        assert payload.prompt == "cat surfing"
        assert payload.model == "veo-3.1-generate-preview"
        assert payload.duration_seconds == 8
        assert payload.seed_media is None
        assert payload.is_extension is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt", ["", "   "])
    async def test_blank_prompt_rejected(self, preprocessor, prompt):
        with pytest.raises(AttachmentValidationError, match="prompt is required"):
            await preprocessor.prepare(GenerationRequest(prompt=prompt))

    @pytest.mark.asyncio
    async def test_parent_without_side_rejected(self, preprocessor):
        with pytest.raises(AttachmentValidationError, match="must be given together"):
            await preprocessor.prepare(GenerationRequest(prompt="more", parent_id="vid-1"))

    @pytest.mark.asyncio
    async def test_extension_fields_carried(self, preprocessor):
        payload = await preprocessor.prepare(
            GenerationRequest(prompt="more", parent_id="vid-1", side=ExtensionSide.START)
        )

        assert payload.is_extension is True
        assert payload.parent_id == "vid-1"
        assert payload.side is ExtensionSide.START


class TestLocators:
    @pytest.mark.asyncio
    async def test_neither_pointer_nor_url_rejected(self, preprocessor):
        request = GenerationRequest(
            prompt="p", attachment=AttachmentDescriptor(kind="image", mime_type="image/png")
        )

        with pytest.raises(AttachmentValidationError, match="exactly one of pointer or url"):
            await preprocessor.prepare(request)

    @pytest.mark.asyncio
    async def test_both_pointer_and_url_rejected(self, preprocessor, attachment_store):
        pointer = attachment_store.put(b"png", "image/png")
        request = GenerationRequest(
            prompt="p",
            attachment=AttachmentDescriptor(
                kind="image", mime_type="image/png", pointer=pointer, url="https://x/a.png"
            ),
        )

        with pytest.raises(AttachmentValidationError, match="exactly one of pointer or url"):
            await preprocessor.prepare(request)

    @pytest.mark.asyncio
    async def test_expired_pointer_rejected(self, preprocessor, attachment_store, clock):
        pointer = attachment_store.put(b"png", "image/png")
        clock.advance(3600)
        request = GenerationRequest(
            prompt="p",
            attachment=AttachmentDescriptor(kind="image", mime_type="image/png", pointer=pointer),
        )

        with pytest.raises(AttachmentValidationError, match="not found or expired"):
            await preprocessor.prepare(request)

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, preprocessor):
        request = GenerationRequest(
            prompt="p",
            attachment=AttachmentDescriptor(kind="pdf", mime_type="application/pdf", pointer="a"),
        )

        with pytest.raises(AttachmentValidationError, match="Unsupported attachment kind"):
            await preprocessor.prepare(request)


class TestImageAttachment:
    @pytest.mark.asyncio
    async def test_image_becomes_seed_and_pins_duration(self, preprocessor, attachment_store):
        pointer = attachment_store.put(b"png-bytes", "image/png")
        request = GenerationRequest(
            prompt="animate this",
            attachment=AttachmentDescriptor(kind="image", mime_type="image/png", pointer=pointer),
            model="veo-3.0-fast-generate-001",
            duration_seconds=4,
        )

        payload = await preprocessor.prepare(request)

        assert payload.seed_media.data == b"png-bytes"
        assert payload.seed_media.kind == "image"
        assert payload.duration_seconds == 8

    @pytest.mark.asyncio
    async def test_empty_image_rejected(self, preprocessor, attachment_store):
        pointer = attachment_store.put(b"", "image/png")
        request = GenerationRequest(
            prompt="p",
            attachment=AttachmentDescriptor(kind="image", mime_type="image/png", pointer=pointer),
        )

        with pytest.raises(AttachmentValidationError, match="empty"):
            await preprocessor.prepare(request)

    @pytest.mark.asyncio
    async def test_image_over_ceiling_rejected(self, transcriber, clock):
        """[P1] Images above 10MB are rejected even when the buffer accepted them."""
        store = AttachmentStore(capacity_bytes=50 * MB, ttl_seconds=60, clock=clock)
        preprocessor = AttachmentPreprocessor(
            store, transcriber, default_model="veo-3.1-generate-preview"
        )
        pointer = store.put(b"x" * (10 * MB + 1), "image/png")
        request = GenerationRequest(
            prompt="p",
            attachment=AttachmentDescriptor(kind="image", mime_type="image/png", pointer=pointer),
        )

        with pytest.raises(AttachmentValidationError, match="too large"):
            await preprocessor.prepare(request)


class TestAudioAttachment:
    @pytest.mark.asyncio
    async def test_transcript_prefixed_to_prompt(self, preprocessor, attachment_store, transcriber):
        pointer = attachment_store.put(b"mp3-bytes", "audio/mpeg")
        request = GenerationRequest(
            prompt="a farm at dawn",
            attachment=AttachmentDescriptor(kind="audio", mime_type="audio/mpeg", pointer=pointer),
            duration_seconds=6,
        )

        payload = await preprocessor.prepare(request)

        transcriber.transcribe.assert_awaited_once_with(b"mp3-bytes", "audio/mpeg")
        assert "A dog barks twice at 0:02." in payload.prompt
        assert payload.prompt.endswith("User prompt: a farm at dawn")
        assert payload.seed_media is None
        assert payload.duration_seconds == 6

    @pytest.mark.asyncio
    async def test_transcription_failure_keeps_original_prompt(
        self, preprocessor, attachment_store, transcriber
    ):
        """[P0] A failing transcriber degrades to the unmodified prompt."""
        # GIVEN: a transcriber that raises
        transcriber.transcribe.side_effect = TranscriptionError("model unavailable")
        pointer = attachment_store.put(b"mp3-bytes", "audio/mpeg")

        # WHEN: an audio request is prepared
        payload = await preprocessor.prepare(
            GenerationRequest(
                prompt="a farm at dawn",
                attachment=AttachmentDescriptor(
                    kind="audio", mime_type="audio/mpeg", pointer=pointer
                ),
            )
        )

        # THEN: the payload is produced with the original prompt
        assert payload.prompt == "a farm at dawn"

    @pytest.mark.asyncio
    async def test_unexpected_transcriber_error_also_degrades(
        self, preprocessor, attachment_store, transcriber
    ):
        transcriber.transcribe.side_effect = RuntimeError("socket closed")
        pointer = attachment_store.put(b"mp3-bytes", "audio/mpeg")

        payload = await preprocessor.prepare(
            GenerationRequest(
                prompt="a farm at dawn",
                attachment=AttachmentDescriptor(
                    kind="audio", mime_type="audio/mpeg", pointer=pointer
                ),
            )
        )

        assert payload.prompt == "a farm at dawn"

    @pytest.mark.asyncio
    async def test_empty_transcript_keeps_original_prompt(
        self, preprocessor, attachment_store, transcriber
    ):
        transcriber.transcribe.return_value = None
        pointer = attachment_store.put(b"mp3-bytes", "audio/mpeg")

        payload = await preprocessor.prepare(
            GenerationRequest(
                prompt="rain",
                attachment=AttachmentDescriptor(
                    kind="audio", mime_type="audio/mpeg", pointer=pointer
                ),
            )
        )

        assert payload.prompt == "rain"


class TestVideoAttachment:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "declared,forwarded",
        [
            ("video/quicktime", "video/mp4"),
            ("video/x-matroska", "video/mp4"),
            ("video/webm", "video/webm"),
        ],
    )
    async def test_mime_remap(self, preprocessor, attachment_store, declared, forwarded):
        pointer = attachment_store.put(b"mov-bytes", declared)
        payload = await preprocessor.prepare(
            GenerationRequest(
                prompt="continue",
                attachment=AttachmentDescriptor(kind="video", mime_type=declared, pointer=pointer),
                duration_seconds=4,
            )
        )

        assert payload.seed_media.mime_type == forwarded
        assert payload.seed_media.kind == "video"
        assert payload.duration_seconds == 4


class TestRemoteFetch:
    @pytest.mark.asyncio
    async def test_url_attachment_fetched(self, attachment_store, transcriber):
        def handler(request):
            assert str(request.url) == "https://cdn.example.com/frame.png"
            return httpx.Response(200, content=b"remote-png", headers={"content-type": "image/png"})

        preprocessor = AttachmentPreprocessor(
            attachment_store, transcriber, http_client=make_transport(handler),
            default_model="veo-3.1-generate-preview",
        )

        payload = await preprocessor.prepare(
            GenerationRequest(
                prompt="p",
                attachment=AttachmentDescriptor(
                    kind="image", mime_type="image/png", url="https://cdn.example.com/frame.png"
                ),
            )
        )

        assert payload.seed_media.data == b"remote-png"

    @pytest.mark.asyncio
    async def test_http_error_raises_upstream_fetch_error(self, preprocessor):
        with pytest.raises(UpstreamFetchError) as exc_info:
            await preprocessor.fetch_remote("https://cdn.example.com/missing.png", "image/png")

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == "https://cdn.example.com/missing.png"

    @pytest.mark.asyncio
    async def test_transport_errors_retried_then_wrapped(self, attachment_store, transcriber, mocker):
        mocker.patch("asyncio.sleep", new_callable=AsyncMock)
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        preprocessor = AttachmentPreprocessor(
            attachment_store, transcriber, http_client=make_transport(handler),
            default_model="veo-3.1-generate-preview",
        )

        with pytest.raises(UpstreamFetchError, match="Failed to fetch attachment"):
            await preprocessor.fetch_remote("https://cdn.example.com/a.png", "image/png")

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_empty_remote_payload_rejected(self, attachment_store, transcriber):
        preprocessor = AttachmentPreprocessor(
            attachment_store, transcriber,
            http_client=make_transport(lambda request: httpx.Response(200, content=b"")),
            default_model="veo-3.1-generate-preview",
        )

        with pytest.raises(AttachmentValidationError, match="empty"):
            await preprocessor.prepare(
                GenerationRequest(
                    prompt="p",
                    attachment=AttachmentDescriptor(
                        kind="image", mime_type="image/png", url="https://cdn.example.com/a.png"
                    ),
                )
            )
