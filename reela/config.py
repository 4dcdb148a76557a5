"""Configuration management for the generation orchestrator.

This module provides centralized configuration loading from environment variables.
Required values are cached after the first successful read; tunables are
re-read on every call so tests can override them with monkeypatch.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL (required for the record store)
    GOOGLE_GENERATIVE_AI_API_KEY: API key for Veo and Gemini (required)
    GCS_BUCKET_NAME: Object storage bucket for generated videos (optional)
    GOOGLE_APPLICATION_CREDENTIALS_JSON_BASE64: Service account JSON, base64 (optional)
    DEFAULT_GENERATION_MODEL: Model used when a request names none (optional)

Usage:
    from reela.config import get_poll_interval_seconds, get_database_url

    delay = get_poll_interval_seconds()  # 10 unless overridden
    db_url = get_database_url()  # Raises if DATABASE_URL not set
"""

import base64
import binascii
import json
import os
from functools import lru_cache

import structlog

from reela.constants import MB, TEN_YEARS_MINUTES

log = structlog.get_logger(__name__)

DEFAULT_BUCKET_NAME = "reela-videos"
DEFAULT_GENERATION_MODEL = "veo-3.1-generate-preview"
DEFAULT_TRANSCRIPTION_MODEL = "gemini-2.5-flash"

DEFAULT_POLL_INTERVAL_SECONDS = 10
DEFAULT_MAX_POLL_ATTEMPTS = 60
DEFAULT_TEMPORARY_TTL_MINUTES = 30
DEFAULT_ATTACHMENT_STORE_CAPACITY = 100 * MB
DEFAULT_ATTACHMENT_STORE_TTL_SECONDS = 15 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 300


def _get_int(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer tunable, clamped to [minimum, maximum].

    Invalid values log a warning and fall back to ``default``.
    """
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("invalid_integer_setting", name=name, value=raw, using_default=default)
        return default
    return max(minimum, min(maximum, value))


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Returns:
        Database URL with asyncpg driver.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


@lru_cache
def get_google_api_key() -> str:
    """Get the Google Generative AI API key used by Veo and Gemini.

    Environment Variable:
        GOOGLE_GENERATIVE_AI_API_KEY: API key string

    Raises:
        ValueError: If GOOGLE_GENERATIVE_AI_API_KEY not set.
    """
    key = os.getenv("GOOGLE_GENERATIVE_AI_API_KEY")
    if not key:
        raise ValueError("GOOGLE_GENERATIVE_AI_API_KEY environment variable is required")
    return key


def get_bucket_name() -> str:
    """Get object storage bucket name (default: "reela-videos")."""
    return os.getenv("GCS_BUCKET_NAME", DEFAULT_BUCKET_NAME)


def get_gcs_credentials_info() -> dict | None:
    """Decode service account credentials for object storage.

    Environment Variable:
        GOOGLE_APPLICATION_CREDENTIALS_JSON_BASE64: base64-encoded service
            account JSON. When unset, application default credentials are used.

    Raises:
        ValueError: If the variable is set but is not valid base64 JSON.
    """
    raw = os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON_BASE64")
    if not raw:
        return None
    try:
        return json.loads(base64.b64decode(raw).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(
            "GOOGLE_APPLICATION_CREDENTIALS_JSON_BASE64 is not valid base64-encoded JSON"
        ) from e


def get_default_generation_model() -> str:
    """Get the generation model used when a request does not name one."""
    return os.getenv("DEFAULT_GENERATION_MODEL", DEFAULT_GENERATION_MODEL)


def get_transcription_model() -> str:
    """Get the Gemini model used to transcribe audio attachments."""
    return os.getenv("TRANSCRIPTION_MODEL", DEFAULT_TRANSCRIPTION_MODEL)


def get_poll_interval_seconds() -> int:
    """Get delay between generation status polls.

    Environment Variable:
        POLL_INTERVAL_SECONDS: Delay in seconds (default: 10)

    Returns:
        Poll interval in seconds (minimum 1, maximum 60).
    """
    return _get_int("POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS, 1, 60)


def get_max_poll_attempts() -> int:
    """Get the poll attempt budget after which a job is declared timed out.

    Timeout is enforced by attempt count, not wall-clock time; the effective
    deadline is roughly interval × attempts plus the latency of each poll.

    Environment Variable:
        MAX_POLL_ATTEMPTS: Attempt budget (default: 60)

    Returns:
        Attempt budget (minimum 1, maximum 360).
    """
    return _get_int("MAX_POLL_ATTEMPTS", DEFAULT_MAX_POLL_ATTEMPTS, 1, 360)


def get_temporary_ttl_minutes() -> int:
    """Get the lifetime of artifacts generated for anonymous callers.

    Environment Variable:
        TEMPORARY_ARTIFACT_TTL_MINUTES: TTL in minutes (default: 30)
    """
    return _get_int("TEMPORARY_ARTIFACT_TTL_MINUTES", DEFAULT_TEMPORARY_TTL_MINUTES, 1, 24 * 60)


def get_permanent_signed_url_minutes() -> int:
    """Get the lifetime of signed URLs issued for owned artifacts (default: 10 years)."""
    return _get_int(
        "PERMANENT_SIGNED_URL_TTL_MINUTES", TEN_YEARS_MINUTES, 60, TEN_YEARS_MINUTES
    )


def get_attachment_store_capacity() -> int:
    """Get total byte budget of the in-memory attachment store (default: 100MB)."""
    return _get_int(
        "ATTACHMENT_STORE_CAPACITY_BYTES", DEFAULT_ATTACHMENT_STORE_CAPACITY, MB, 1024 * MB
    )


def get_attachment_store_ttl_seconds() -> int:
    """Get how long buffered attachments remain addressable (default: 15 minutes)."""
    return _get_int(
        "ATTACHMENT_STORE_TTL_SECONDS", DEFAULT_ATTACHMENT_STORE_TTL_SECONDS, 10, 24 * 3600
    )


def get_sweep_interval_seconds() -> int:
    """Get the interval of the temporary artifact sweeper.

    Environment Variable:
        TEMPORARY_SWEEP_INTERVAL_SECONDS: Interval (default: 300, 0 disables)
    """
    return _get_int("TEMPORARY_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS, 0, 86400)


def get_log_level() -> str:
    """Get log level name (default: INFO)."""
    return os.getenv("LOG_LEVEL", "INFO").upper()
