"""Generation job controller.

Drives one generation job on the external service from submission to a
terminal outcome and reports progress as typed events.

State machine (see ``JOB_STATE_TRANSITIONS``):
    submitted → polling → succeeded | failed | timed_out | cancelled

Event sequence yielded by :meth:`GenerationJobController.run`:
    initiating(0) → [uploading(5)] → generating(10) → generating(10..80)* →
    one of:
        ErrorEvent        submission, poll or service-reported failure, timeout
        CancelledEvent    cancel signal observed before completion
        JobCompleted      hand-off marker: the job produced a video; retrieval
                          and storage are the event stream's responsibility

Timing:
    The loop waits ``poll_interval`` seconds between polls and gives up after
    ``max_attempts`` polls. Timeout is therefore an attempt budget, not a
    wall-clock deadline: the effective limit is roughly
    ``poll_interval * max_attempts`` plus the latency of each poll call.
    A failed poll is not retried; it ends the job with a classified error.

Progress while polling is synthetic (the service exposes no completion
fraction): ``round(min(10 + attempts / max_attempts * 70, 80))``.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

import structlog

from reela.config import get_max_poll_attempts, get_poll_interval_seconds
from reela.constants import (
    POLL_PROGRESS_CEILING,
    POLL_PROGRESS_FLOOR,
    PROGRESS_INITIATING,
    PROGRESS_UPLOADING,
)
from reela.models import JobHandle, JobState
from reela.schemas.generation import CancelledEvent, ErrorEvent, ProgressEvent
from reela.services.attachment_preprocessor import GenerationPayload
from reela.services.error_classifier import ClassifiedError, ErrorKind, classify_error

log = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "Video generation timed out after maximum polling attempts"
NO_VIDEO_MESSAGE = "Video generation completed but no video was produced"


class GenerationService(Protocol):
    async def submit(self, payload: GenerationPayload) -> JobHandle: ...

    async def poll(self, handle: JobHandle) -> JobHandle: ...

    async def request_cancel(self, handle: JobHandle) -> None: ...

    async def fetch_result_bytes(self, uri: str) -> tuple[bytes, str]: ...


@dataclass(frozen=True)
class JobCompleted:
    """Hand-off marker: the job succeeded and ``handle.result_uri`` is set."""

    handle: JobHandle


ControllerOutput = ProgressEvent | ErrorEvent | CancelledEvent | JobCompleted


def poll_progress(attempts: int, max_attempts: int) -> int:
    """Synthetic progress percentage after ``attempts`` polls."""
    span = POLL_PROGRESS_CEILING - POLL_PROGRESS_FLOOR
    return round(min(POLL_PROGRESS_FLOOR + attempts / max_attempts * span, POLL_PROGRESS_CEILING))


class GenerationJobController:
    """Runs exactly one job for one request.

    A controller instance must not be reused; ``handle`` belongs to it for
    the lifetime of the request.

    Attributes:
        service: Generation service client.
        poll_interval: Seconds between polls.
        max_attempts: Poll budget before the job is declared timed out.
        handle: Current job handle (a placeholder until submission succeeds).
        attempts: Polls performed so far.
    """

    def __init__(
        self,
        service: GenerationService,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
    ):
        self.service = service
        self.poll_interval = (
            poll_interval if poll_interval is not None else get_poll_interval_seconds()
        )
        self.max_attempts = max_attempts if max_attempts is not None else get_max_poll_attempts()
        self.handle = JobHandle(name="")
        self.attempts = 0
        self._started = False

    async def run(
        self, payload: GenerationPayload, cancel: asyncio.Event
    ) -> AsyncIterator[ControllerOutput]:
        """Submit the job and poll it to a terminal outcome.

        Yields events in order; the last item is always a terminal event or
        :class:`JobCompleted`.

        Raises:
            RuntimeError: If called twice on the same controller.
        """
        if self._started:
            raise RuntimeError("GenerationJobController.run() may only be called once")
        self._started = True

        yield ProgressEvent(status="initiating", progress=PROGRESS_INITIATING)
        if payload.seed_media is not None:
            yield ProgressEvent(status="uploading", progress=PROGRESS_UPLOADING)

        try:
            submitted = await self.service.submit(payload)
        except Exception as e:
            classified = classify_error(e)
            log.error(
                "generation_submit_failed",
                error=str(e),
                error_type=classified.kind.value,
            )
            self.handle.transition_to(JobState.FAILED)
            yield ErrorEvent.from_classified(classified)
            return

        self.handle = submitted
        self.handle.transition_to(JobState.POLLING)
        log.info("generation_polling_started", job_name=self.handle.name)
        yield ProgressEvent(status="generating", progress=POLL_PROGRESS_FLOOR)

        while not self.handle.done and self.attempts < self.max_attempts:
            if cancel.is_set():
                yield await self._cancel()
                return

            if await self._wait(cancel):
                continue

            try:
                polled = await self.service.poll(self.handle)
            except Exception as e:
                classified = classify_error(e)
                log.error(
                    "generation_poll_failed",
                    job_name=self.handle.name,
                    attempt=self.attempts + 1,
                    error=str(e),
                    error_type=classified.kind.value,
                )
                self.handle.transition_to(JobState.FAILED)
                yield ErrorEvent.from_classified(classified)
                return

            self.handle.refresh_from(polled)
            self.attempts += 1
            yield ProgressEvent(
                status="generating",
                progress=poll_progress(self.attempts, self.max_attempts),
                poll_count=self.attempts,
            )

        if cancel.is_set():
            yield await self._cancel()
            return

        if not self.handle.done:
            log.warning(
                "generation_timed_out",
                job_name=self.handle.name,
                attempts=self.attempts,
                poll_interval=self.poll_interval,
            )
            self.handle.transition_to(JobState.TIMED_OUT)
            yield ErrorEvent.from_classified(
                ClassifiedError.of(ErrorKind.TIMEOUT_ERROR, TIMEOUT_MESSAGE)
            )
            return

        if self.handle.error:
            classified = classify_error(self.handle.error, default=ErrorKind.GENERATION_FAILED)
            log.error(
                "generation_job_failed",
                job_name=self.handle.name,
                error=str(self.handle.error),
                error_type=classified.kind.value,
            )
            self.handle.transition_to(JobState.FAILED)
            yield ErrorEvent.from_classified(classified)
            return

        if not self.handle.result_uri:
            log.error("generation_produced_no_video", job_name=self.handle.name)
            self.handle.transition_to(JobState.FAILED)
            yield ErrorEvent.from_classified(
                ClassifiedError.of(ErrorKind.GENERATION_FAILED, NO_VIDEO_MESSAGE)
            )
            return

        self.handle.transition_to(JobState.SUCCEEDED)
        log.info(
            "generation_job_succeeded",
            job_name=self.handle.name,
            attempts=self.attempts,
            result_uri=self.handle.result_uri,
        )
        yield JobCompleted(handle=self.handle)

    async def request_upstream_cancel(self) -> None:
        """Best-effort cancel of the upstream job; failures are logged only."""
        if not self.handle.name:
            return
        try:
            await self.service.request_cancel(self.handle)
        except Exception as e:
            log.warning(
                "generation_cancel_request_failed",
                job_name=self.handle.name,
                error=str(e),
            )

    async def _cancel(self) -> CancelledEvent:
        log.info("generation_cancelled", job_name=self.handle.name, attempts=self.attempts)
        await self.request_upstream_cancel()
        self.handle.transition_to(JobState.CANCELLED)
        return CancelledEvent()

    async def _wait(self, cancel: asyncio.Event) -> bool:
        """Sleep one poll interval; return True if cancelled meanwhile."""
        if self.poll_interval <= 0:
            await asyncio.sleep(0)
            return cancel.is_set()
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return False
        return True
