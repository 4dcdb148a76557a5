# Data factories for test data generation

from tests.support.factories.video_factory import (
    JOB_NAME,
    RESULT_URI,
    FakeGenerationService,
    FakeObjectStore,
    FakeRecordStore,
    create_payload,
    create_video,
    finished_job,
    running_job,
)

__all__ = [
    "JOB_NAME",
    "RESULT_URI",
    # Model factories
    "create_video",
    "create_payload",
    "running_job",
    "finished_job",
    # Collaborator fakes
    "FakeGenerationService",
    "FakeObjectStore",
    "FakeRecordStore",
]
