"""FastAPI application for the video generation orchestrator.

This is the web service entry point. It wires the generation services at
start-up, serves the video routes and runs the temporary artifact sweeper
in the background.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from reela.config import get_sweep_interval_seconds
from reela.dependencies import build_services
from reela.exceptions import ConfigurationError
from reela.routes import videos
from reela.services.error_classifier import ClassifiedError, ErrorKind
from reela.services.temporary_sweeper import sweep_temporary_artifacts_loop
from reela.utils.logging import configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup/shutdown of shared services and background tasks.

    Startup:
    - Configure structured logging
    - Build generation services if the API key and database are configured
    - Start the temporary artifact sweeper (unless disabled)

    Shutdown:
    - Cancel the sweeper gracefully
    - Close HTTP client connections
    """
    configure_logging()

    services = None
    sweep_task = None

    try:
        services = build_services()
    except ConfigurationError as e:
        log.warning("generation_disabled", message=str(e))
    app.state.services = services

    sweep_interval = get_sweep_interval_seconds()
    if services is not None and sweep_interval > 0:
        sweep_task = asyncio.create_task(
            sweep_temporary_artifacts_loop(
                services.objects, sweep_interval, attachments=services.attachment_store
            )
        )
    else:
        log.warning("temporary_sweep_disabled", interval_seconds=sweep_interval)

    yield  # Application runs here

    if sweep_task:
        log.info("shutting_down_temporary_sweep")
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            log.info("temporary_sweep_task_cancelled")

    if services is not None:
        await services.close()


app = FastAPI(
    title="Reela - Video Generation Orchestrator",
    description="Submits, tracks and stores AI video generations with live progress streams",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(videos.router)


def _error_body(classified: ClassifiedError) -> JSONResponse:
    return videos.classified_response(classified)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as ``invalid_request`` (400)."""
    log.warning("request_validation_failed", path=request.url.path, errors=exc.errors()[:3])
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid request: {location} {first.get('msg', '')}".strip()
    return _error_body(ClassifiedError.of(ErrorKind.INVALID_REQUEST, message))


@app.exception_handler(ConfigurationError)
async def handle_configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    log.error("service_not_configured", path=request.url.path, error=str(exc))
    return _error_body(ClassifiedError.of(ErrorKind.UNKNOWN_ERROR, str(exc)))


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint.

    Returns:
        JSONResponse: Status and whether generation is configured
    """
    return JSONResponse(
        content={
            "status": "healthy",
            "service": "reela",
            "generation_enabled": getattr(request.app.state, "services", None) is not None,
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Binding to 0.0.0.0 is intentional for container deployments
    uvicorn.run(
        "reela.main:app",
        host="0.0.0.0",  # noqa: S104
        port=8000,
        reload=True,
    )
