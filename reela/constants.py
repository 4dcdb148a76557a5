"""Project-wide constants and mappings.

This module contains the progress markers emitted on the event stream,
per-kind attachment size ceilings, the MIME remapping table for seed
videos and the catalogue of supported generation models.
"""

# Progress markers (percent) for the event stream.
# Polling progress is synthetic: the generation service exposes no
# completion fraction, so it is derived from the attempt count and
# confined to POLL_PROGRESS_FLOOR..POLL_PROGRESS_CEILING.
PROGRESS_INITIATING = 0
PROGRESS_UPLOADING = 5
POLL_PROGRESS_FLOOR = 10
POLL_PROGRESS_CEILING = 80
PROGRESS_RETRIEVING = 85
PROGRESS_READY = 90
PROGRESS_COMPLETE = 100

MB = 1024 * 1024

# Attachment kind → maximum accepted payload size in bytes
ATTACHMENT_SIZE_LIMITS: dict[str, int] = {
    "image": 10 * MB,
    "audio": 25 * MB,
    "video": 100 * MB,
}

# Seed video MIME types the generation service rejects or mis-decodes,
# mapped to a broadly supported container type
VIDEO_MIME_REMAP: dict[str, str] = {
    "video/quicktime": "video/mp4",
    "video/x-m4v": "video/mp4",
    "video/x-matroska": "video/mp4",
    "video/x-msvideo": "video/mp4",
}

# Fallback content type when the generation service omits one
DEFAULT_VIDEO_CONTENT_TYPE = "video/mp4"

# Generation model → supported clip durations in seconds (ascending)
MODEL_DURATIONS: dict[str, tuple[int, ...]] = {
    "veo-2.0-generate-001": (5, 6, 7, 8),
    "veo-3.0-generate-001": (4, 6, 8),
    "veo-3.0-fast-generate-001": (4, 6, 8),
    "veo-3.1-generate-preview": (4, 6, 8),
    "veo-3.1-fast-generate-preview": (4, 6, 8),
}

# Signed URL lifetimes (minutes)
TEN_YEARS_MINUTES = 60 * 24 * 365 * 10
