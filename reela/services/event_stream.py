"""Event stream multiplexer.

Turns one generation job into the ordered event sequence delivered to the
caller, and performs retrieval and storage once the job has produced a
video:

    controller events ... → retrieving(85) → ready(90) → complete(100)

Guarantees:
    - Events are forwarded as soon as they are produced.
    - Exactly one terminal event (complete, error or cancelled) ends every
      stream that is consumed to exhaustion. :class:`EventChannel` enforces
      this and the non-decreasing progress order.
    - Failures after the job succeeded (download, upload, signing, record
      insert) still end with a classified error event.
    - If the consumer goes away (generator closed or task cancelled), an
      upstream cancel is fired without awaiting it and the stream stops
      without emitting anything else.
"""

import asyncio
from collections.abc import AsyncIterator

import structlog

from reela.constants import PROGRESS_READY, PROGRESS_RETRIEVING
from reela.exceptions import EventStreamClosedError
from reela.schemas.generation import (
    CancelledEvent,
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    StreamEvent,
)
from reela.services.artifact_storage import ArtifactPlacement, Owner
from reela.services.attachment_preprocessor import GenerationPayload
from reela.services.chain_order import ChainOrderResolver
from reela.services.error_classifier import classify_error
from reela.services.generation_controller import (
    GenerationJobController,
    GenerationService,
    JobCompleted,
)

log = structlog.get_logger(__name__)

STORAGE_ERROR_PREFIX = "Failed to retrieve or store video file: "


def encode_sse(event: StreamEvent) -> str:
    """Render one event as a server-sent events ``data:`` frame."""
    return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


class EventChannel:
    """Single-writer event sequence with one terminal event.

    Example:
        >>> channel = EventChannel()
        >>> channel.emit(ProgressEvent(status="initiating", progress=0))
        >>> channel.emit(CancelledEvent())
        >>> channel.closed
        True
    """

    def __init__(self) -> None:
        self.closed = False
        self.last_progress = 0
        self.count = 0

    def emit(self, event: StreamEvent) -> StreamEvent:
        """Validate and record an event, returning it for delivery.

        Raises:
            EventStreamClosedError: If a terminal event was already emitted,
                or progress would go backwards.
        """
        if self.closed:
            raise EventStreamClosedError(
                f"Event {event.status!r} emitted after the terminal event"
            )
        progress = getattr(event, "progress", None)
        if progress is not None:
            if progress < self.last_progress:
                raise EventStreamClosedError(
                    f"Progress regressed from {self.last_progress} to {progress}"
                )
            self.last_progress = progress
        self.count += 1
        if event.terminal:
            self.closed = True
        return event


class GenerationEventStream:
    """Produces the event stream for one request.

    Attributes:
        service: Generation service client.
        placement: Storage placement for finished videos.
        resolver: Chain order resolver for extensions.
        poll_interval: Overrides the configured poll interval when set.
        max_attempts: Overrides the configured poll budget when set.
    """

    def __init__(
        self,
        service: GenerationService,
        placement: ArtifactPlacement,
        resolver: ChainOrderResolver,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
    ):
        self.service = service
        self.placement = placement
        self.resolver = resolver
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._background: set[asyncio.Task] = set()

    def new_controller(self) -> GenerationJobController:
        return GenerationJobController(
            self.service, poll_interval=self.poll_interval, max_attempts=self.max_attempts
        )

    async def stream(
        self,
        payload: GenerationPayload,
        owner: Owner | None,
        cancel: asyncio.Event,
    ) -> AsyncIterator[StreamEvent]:
        """Run the job and yield its events, ending in one terminal event."""
        channel = EventChannel()
        controller = self.new_controller()
        completed: JobCompleted | None = None

        try:
            async for item in self._guarded(controller, payload, cancel):
                if isinstance(item, JobCompleted):
                    completed = item
                    continue
                yield channel.emit(item)

            if channel.closed or completed is None:
                return

            if cancel.is_set():
                log.info("generation_cancelled_after_completion", job_name=completed.handle.name)
                yield channel.emit(CancelledEvent())
                return

            yield channel.emit(ProgressEvent(status="retrieving", progress=PROGRESS_RETRIEVING))
            try:
                data, content_type = await self.service.fetch_result_bytes(
                    completed.handle.result_uri
                )
            except Exception as e:
                yield channel.emit(self._storage_error(e, completed, stage="retrieve"))
                return

            yield channel.emit(ProgressEvent(status="ready", progress=PROGRESS_READY))
            try:
                artifact = await self._store(
                    payload, owner, data, completed.handle.result_mime_type or content_type
                )
            except Exception as e:
                yield channel.emit(self._storage_error(e, completed, stage="store"))
                return

            log.info(
                "generation_stream_complete",
                job_name=completed.handle.name,
                file_id=artifact.file_id,
                is_temporary=artifact.is_temporary,
            )
            yield channel.emit(CompleteEvent(video=artifact))
        except (asyncio.CancelledError, GeneratorExit):
            if not channel.closed:
                log.info(
                    "generation_stream_disconnected",
                    job_name=controller.handle.name,
                    events_sent=channel.count,
                )
                cancel.set()
                if not controller.handle.is_terminal:
                    task = asyncio.get_running_loop().create_task(
                        controller.request_upstream_cancel()
                    )
                    self._background.add(task)
                    task.add_done_callback(self._background.discard)
            raise

    async def _guarded(
        self,
        controller: GenerationJobController,
        payload: GenerationPayload,
        cancel: asyncio.Event,
    ) -> AsyncIterator:
        """Forward controller output; an unexpected crash becomes an error event."""
        run = controller.run(payload, cancel)
        try:
            async for item in run:
                yield item
        except Exception as e:
            classified = classify_error(e)
            log.exception(
                "generation_controller_crashed",
                job_name=controller.handle.name,
                error_type=classified.kind.value,
            )
            yield ErrorEvent.from_classified(classified)
        finally:
            await run.aclose()

    async def _store(
        self,
        payload: GenerationPayload,
        owner: Owner | None,
        data: bytes,
        content_type: str,
    ):
        parent_id = payload.parent_id
        chain_order = None
        if payload.is_extension and owner is not None:
            position = await self.resolver.locate(payload.parent_id, payload.side)
            parent_id = position.parent_id
            chain_order = position.chain_order

        return await self.placement.place(
            data,
            content_type,
            owner,
            prompt=payload.prompt,
            model=payload.model,
            duration=payload.duration_seconds,
            parent_id=parent_id,
            chain_order=chain_order,
        )

    def _storage_error(
        self, error: Exception, completed: JobCompleted, stage: str
    ) -> ErrorEvent:
        classified = classify_error(error)
        log.error(
            "generation_result_storage_failed",
            job_name=completed.handle.name,
            stage=stage,
            error=str(error),
            error_type=classified.kind.value,
        )
        return ErrorEvent.from_classified(classified, prefix=STORAGE_ERROR_PREFIX)
