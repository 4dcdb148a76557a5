"""Process-wide service wiring and FastAPI dependencies.

The application lifespan builds one :class:`GenerationServices` and stores
it on ``app.state.services``. Routes obtain the pieces they need through
the ``get_*`` dependencies, which tests replace with
``app.dependency_overrides``.
"""

from dataclasses import dataclass

import structlog
from fastapi import Request

from reela.clients.object_storage import ObjectStorageClient
from reela.clients.transcription import TranscriptionClient
from reela.clients.veo import VeoClient
from reela.config import (
    get_attachment_store_capacity,
    get_attachment_store_ttl_seconds,
    get_bucket_name,
    get_gcs_credentials_info,
    get_google_api_key,
    get_transcription_model,
)
from reela.database import get_session_factory
from reela.exceptions import ConfigurationError
from reela.services.artifact_repository import ArtifactRepository
from reela.services.artifact_storage import ArtifactPlacement, Owner
from reela.services.attachment_preprocessor import AttachmentPreprocessor
from reela.services.attachment_store import AttachmentStore
from reela.services.chain_order import ChainOrderResolver
from reela.services.event_stream import GenerationEventStream

log = structlog.get_logger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"


@dataclass
class GenerationServices:
    """Everything a generation request needs, shared across requests.

    Only the backends are shared; each request gets its own controller and
    event channel.
    """

    attachment_store: AttachmentStore
    preprocessor: AttachmentPreprocessor
    events: GenerationEventStream
    repository: ArtifactRepository
    veo: VeoClient
    objects: ObjectStorageClient

    async def close(self) -> None:
        await self.veo.close()
        await self.preprocessor.http_client.aclose()


def build_services() -> GenerationServices:
    """Construct clients and services from the environment.

    Raises:
        ConfigurationError: If the API key or database is not configured.
    """
    try:
        api_key = get_google_api_key()
        session_factory = get_session_factory()
    except (ValueError, RuntimeError) as e:
        raise ConfigurationError(str(e)) from e

    store = AttachmentStore(
        capacity_bytes=get_attachment_store_capacity(),
        ttl_seconds=get_attachment_store_ttl_seconds(),
    )
    veo = VeoClient(api_key)
    objects = ObjectStorageClient(get_bucket_name(), credentials_info=get_gcs_credentials_info())
    repository = ArtifactRepository(session_factory)
    preprocessor = AttachmentPreprocessor(
        store, TranscriptionClient(api_key, model=get_transcription_model())
    )
    events = GenerationEventStream(
        service=veo,
        placement=ArtifactPlacement(objects, repository),
        resolver=ChainOrderResolver(repository),
    )
    log.info("generation_services_built", bucket=objects.bucket_name)
    return GenerationServices(
        attachment_store=store,
        preprocessor=preprocessor,
        events=events,
        repository=repository,
        veo=veo,
        objects=objects,
    )


def _services(request: Request) -> GenerationServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ConfigurationError(
            "Video generation is not configured: set GOOGLE_GENERATIVE_AI_API_KEY and DATABASE_URL"
        )
    return services


def get_preprocessor(request: Request) -> AttachmentPreprocessor:
    return _services(request).preprocessor


def get_event_stream(request: Request) -> GenerationEventStream:
    return _services(request).events


def get_attachment_store(request: Request) -> AttachmentStore:
    return _services(request).attachment_store


def get_repository(request: Request) -> ArtifactRepository:
    return _services(request).repository


def get_owner(request: Request) -> Owner | None:
    """Owner attributed by the authenticating proxy, or None when anonymous."""
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not user_id:
        return None
    name = request.headers.get(USER_NAME_HEADER, "").strip() or None
    return Owner(user_id=user_id, name=name)
