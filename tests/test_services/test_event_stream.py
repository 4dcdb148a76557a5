"""Tests for the event stream multiplexer.

Test Coverage:
- Full event order for a successful generation ending in complete(100)
- Exactly one terminal event per stream, nothing after it
- Anonymous vs owned storage placement and chain order resolution
- Retrieval and storage failures after a successful job
- Consumer disconnect fires an upstream cancel
- EventChannel invariants and SSE framing
"""

import asyncio
import json

import httpx
import pytest

from reela.constants import TEN_YEARS_MINUTES
from reela.exceptions import EventStreamClosedError
from reela.models import ExtensionSide
from reela.schemas.generation import (
    Artifact,
    CancelledEvent,
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
)
from reela.services.artifact_storage import ArtifactPlacement, Owner
from reela.services.chain_order import ChainOrderResolver
from reela.services.error_classifier import ErrorKind
from reela.services.event_stream import (
    STORAGE_ERROR_PREFIX,
    EventChannel,
    GenerationEventStream,
    encode_sse,
)
from reela.services.generation_controller import GenerationJobController
from tests.support.factories import (
    FakeGenerationService,
    FakeObjectStore,
    FakeRecordStore,
    create_payload,
    create_video,
    finished_job,
    running_job,
)

OWNER = Owner(user_id="user_1", name="Test User")


def build_stream(service, objects=None, records=None, max_attempts=60):
    objects = objects or FakeObjectStore()
    records = records or FakeRecordStore()
    placement = ArtifactPlacement(
        objects, records, temporary_ttl_minutes=30, permanent_url_minutes=TEN_YEARS_MINUTES
    )
    return GenerationEventStream(
        service,
        placement,
        ChainOrderResolver(records),
        poll_interval=0,
        max_attempts=max_attempts,
    )


async def collect(stream, payload=None, owner=None, cancel=None):
    events = []
    async for event in stream.stream(payload or create_payload(), owner, cancel or asyncio.Event()):
        events.append(event)
    return events


class TestSuccessfulStream:
    @pytest.mark.asyncio
    async def test_cat_surfing_event_order(self):
        """[P0] initiating → generating... → retrieving → ready → complete(100)."""
        # GIVEN: a job that finishes on the third poll
        service = FakeGenerationService(polls=[running_job(), running_job(), finished_job()])
        stream = build_stream(service)

        # WHEN: the stream is consumed
        events = await collect(stream, create_payload(prompt="cat surfing"))

        # THEN: the documented order, one terminal event at the end
        statuses = [e.status for e in events]
        assert statuses == [
            "initiating",
            "generating",
            "generating",
            "generating",
            "generating",
            "retrieving",
            "ready",
            "complete",
        ]
        progress = [e.progress for e in events]
        assert progress == sorted(progress)
        assert progress[-3:] == [85, 90, 100]
        assert events[-1].video.prompt == "cat surfing"
        assert sum(1 for e in events if e.terminal) == 1

    @pytest.mark.asyncio
    async def test_anonymous_result_is_temporary_and_unrecorded(self):
        """[P0] Anonymous callers get a temporary artifact and no record write."""
        # GIVEN: no owner
        objects = FakeObjectStore()
        records = FakeRecordStore()
        stream = build_stream(FakeGenerationService(), objects=objects, records=records)

        # WHEN: the stream completes
        events = await collect(stream, owner=None)

        # THEN: object uploaded as temporary, short-lived URL, no record
        video = events[-1].video
        assert video.is_temporary is True
        assert video.expires_at is not None
        assert video.user_id is None
        assert records.inserted == []
        assert objects.objects[video.file_id]["temporary"] is True
        assert objects.signed == [(video.file_id, 30)]

    @pytest.mark.asyncio
    async def test_owned_result_is_recorded_with_long_lived_url(self):
        objects = FakeObjectStore()
        records = FakeRecordStore()
        service = FakeGenerationService(result=(b"video-data", "video/mp4"))
        stream = build_stream(service, objects=objects, records=records)

        events = await collect(stream, owner=OWNER)

        video = events[-1].video
        assert video.is_temporary is False
        assert video.expires_at is None
        assert video.author == "Test User"
        assert video.file_size == len(b"video-data")
        assert records.inserted[0].file_id == video.file_id
        assert objects.signed == [(video.file_id, TEN_YEARS_MINUTES)]

    @pytest.mark.asyncio
    async def test_owned_extension_resolves_chain_order(self):
        """[P1] Appending to a parent with children at 1..3 yields order 4."""
        # GIVEN: a parent with three clips appended at its end
        parent = create_video(file_id="parent-file")
        children = [create_video(parent_id="parent-file", chain_order=n) for n in (1, 2, 3)]
        records = FakeRecordStore(videos=[parent, *children])
        stream = build_stream(FakeGenerationService(), records=records)
        payload = create_payload(parent_id="parent-file", side=ExtensionSide.END)

        # WHEN: an owned extension completes
        events = await collect(stream, payload=payload, owner=OWNER)

        # THEN: the new clip sits after the last one
        video = events[-1].video
        assert video.parent_id == "parent-file"
        assert video.chain_order == 4

    @pytest.mark.asyncio
    async def test_anonymous_extension_keeps_parent_without_order(self):
        records = FakeRecordStore(videos=[create_video(file_id="parent-file")])
        stream = build_stream(FakeGenerationService(), records=records)
        payload = create_payload(parent_id="parent-file", side=ExtensionSide.START)

        events = await collect(stream, payload=payload, owner=None)

        video = events[-1].video
        assert video.parent_id == "parent-file"
        assert video.chain_order is None

    @pytest.mark.asyncio
    async def test_result_mime_type_from_job_wins(self):
        service = FakeGenerationService(
            polls=[finished_job(result_mime_type="video/webm")],
            result=(b"x", "video/mp4"),
        )

        events = await collect(build_stream(service))

        assert events[-1].video.format == "video/webm"


class TestFailures:
    @pytest.mark.asyncio
    async def test_service_reported_error_skips_retrieval(self):
        """[P0] A job that fails upstream never reaches retrieving."""
        service = FakeGenerationService(
            polls=[running_job(), finished_job(result_uri=None, error={"message": "blocked"})]
        )

        events = await collect(build_stream(service))

        assert "retrieving" not in [e.status for e in events]
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].type is ErrorKind.GENERATION_FAILED
        assert service.fetched == []

    @pytest.mark.asyncio
    async def test_fetch_failure_is_prefixed_error(self):
        service = FakeGenerationService(fetch_error=httpx.ConnectError("connection refused"))

        events = await collect(build_stream(service))

        assert [e.status for e in events[-2:]] == ["retrieving", "error"]
        assert events[-1].error.startswith(STORAGE_ERROR_PREFIX)
        assert events[-1].type is ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_upload_failure_is_upload_failed(self):
        """[P1] Storage failure after a successful job still ends with an error event."""
        objects = FakeObjectStore(upload_error=RuntimeError("bucket unavailable"))

        events = await collect(build_stream(FakeGenerationService(), objects=objects))

        assert [e.status for e in events[-3:]] == ["retrieving", "ready", "error"]
        assert events[-1].type is ErrorKind.UPLOAD_FAILED
        assert events[-1].status_code == 400
        assert events[-1].error.startswith(STORAGE_ERROR_PREFIX + "Failed to upload video")
        assert "bucket unavailable" in events[-1].error

    @pytest.mark.asyncio
    async def test_signing_failure_is_upload_failed(self):
        objects = FakeObjectStore(sign_error=RuntimeError("no signer"))

        events = await collect(build_stream(FakeGenerationService(), objects=objects))

        assert events[-1].type is ErrorKind.UPLOAD_FAILED

    @pytest.mark.asyncio
    async def test_record_insert_failure_is_classified(self):
        records = FakeRecordStore(insert_error=ConnectionError("connection lost"))

        events = await collect(build_stream(FakeGenerationService(), records=records), owner=OWNER)

        assert events[-1].type is ErrorKind.NETWORK_ERROR
        assert events[-1].error.startswith(STORAGE_ERROR_PREFIX)

    @pytest.mark.asyncio
    async def test_controller_crash_becomes_error_event(self):
        class CrashingController(GenerationJobController):
            async def run(self, payload, cancel):
                yield ProgressEvent(status="initiating", progress=0)
                raise RuntimeError("boom")

        stream = build_stream(FakeGenerationService())
        stream.new_controller = lambda: CrashingController(
            stream.service, poll_interval=0, max_attempts=1
        )

        events = await collect(stream)

        assert [e.status for e in events] == ["initiating", "error"]
        assert events[-1].type is ErrorKind.UNKNOWN_ERROR
        assert events[-1].error == "boom"

    @pytest.mark.asyncio
    async def test_timeout_is_single_terminal_event(self):
        service = FakeGenerationService(polls=[running_job()])

        events = await collect(build_stream(service, max_attempts=2))

        assert events[-1].type is ErrorKind.TIMEOUT_ERROR
        assert sum(1 for e in events if e.terminal) == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_final_poll_skips_retrieval(self):
        service = FakeGenerationService(polls=[running_job(), finished_job()])
        cancel = asyncio.Event()
        stream = build_stream(service)

        events = []
        async for event in stream.stream(create_payload(), None, cancel):
            events.append(event)
            if event.status == "generating" and event.poll_count == 2:
                cancel.set()

        assert isinstance(events[-1], CancelledEvent)
        assert service.fetched == []

    @pytest.mark.asyncio
    async def test_consumer_close_fires_upstream_cancel(self):
        """[P0] Closing the stream mid-job cancels upstream and emits nothing more."""
        # GIVEN: a job that never finishes
        service = FakeGenerationService(polls=[running_job()])
        cancel = asyncio.Event()
        stream = build_stream(service, max_attempts=100)
        agen = stream.stream(create_payload(), None, cancel)

        # WHEN: the consumer reads a few events then goes away
        received = [await agen.__anext__() for _ in range(3)]
        await agen.aclose()
        for _ in range(3):
            await asyncio.sleep(0)

        # THEN: cancel signalled and upstream cancel requested once
        assert all(isinstance(e, ProgressEvent) for e in received)
        assert cancel.is_set()
        assert len(service.cancel_calls) == 1

    @pytest.mark.asyncio
    async def test_close_after_terminal_does_not_cancel(self):
        service = FakeGenerationService()
        cancel = asyncio.Event()
        agen = build_stream(service).stream(create_payload(), None, cancel)

        async for event in agen:
            if event.terminal:
                break
        await agen.aclose()
        await asyncio.sleep(0)

        assert service.cancel_calls == []


class TestEventChannel:
    def test_rejects_events_after_terminal(self):
        channel = EventChannel()
        channel.emit(ProgressEvent(status="initiating", progress=0))
        channel.emit(CancelledEvent())

        with pytest.raises(EventStreamClosedError):
            channel.emit(ProgressEvent(status="generating", progress=10))
        assert channel.count == 2

    def test_rejects_regressing_progress(self):
        channel = EventChannel()
        channel.emit(ProgressEvent(status="generating", progress=40))

        with pytest.raises(EventStreamClosedError, match="regressed"):
            channel.emit(ProgressEvent(status="generating", progress=30))

    def test_error_without_progress_is_accepted_late(self):
        channel = EventChannel()
        channel.emit(ProgressEvent(status="ready", progress=90))

        channel.emit(ErrorEvent(error="x", type=ErrorKind.UPLOAD_FAILED, status_code=400))

        assert channel.closed


class TestEncodeSse:
    def test_progress_frame_is_camel_case(self):
        frame = encode_sse(ProgressEvent(status="generating", progress=12, poll_count=2))

        assert frame == 'data: {"status":"generating","progress":12,"pollCount":2}\n\n'

    def test_error_frame(self):
        frame = encode_sse(
            ErrorEvent(error="Request timed out", type=ErrorKind.TIMEOUT_ERROR, status_code=408)
        )

        body = json.loads(frame.removeprefix("data: ").strip())
        assert body == {
            "status": "error",
            "error": "Request timed out",
            "type": "timeout_error",
            "statusCode": 408,
        }

    def test_complete_frame_carries_video(self):
        video = create_video(file_id="f1")

        frame = encode_sse(CompleteEvent(video=Artifact.model_validate(video)))
        body = json.loads(frame.removeprefix("data: ").strip())

        assert body["status"] == "complete"
        assert body["progress"] == 100
        assert body["video"]["fileId"] == "f1"
        assert "downloadUri" in body["video"]
