"""Error classification for failures raised by external collaborators.

Upstream dependencies (the generation service, the object store, remote
attachment hosts) are best-effort third parties whose exceptions do not
share a type hierarchy, so classification is field- and keyword-based
rather than a type match:

1. An explicit ``error_kind`` attribute (set on this project's exceptions).
2. Per kind, in the fixed order authentication, quota, invalid request,
   timeout, network, generation: a numeric status on the error (``code``,
   ``status``, ``status_code`` or ``response.status_code``, including dict
   payloads attached by the generation service to a finished job) or a
   keyword in the message and exception type name.
3. The caller-supplied default.

Usage:
    from reela.services.error_classifier import classify_error

    classified = classify_error(exc)
    print(classified.kind, classified.status_code)
"""

import enum
from dataclasses import dataclass
from typing import Any


class ErrorKind(str, enum.Enum):
    """Closed taxonomy of request failures."""

    AUTHENTICATION_ERROR = "authentication_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_REQUEST = "invalid_request"
    TIMEOUT_ERROR = "timeout_error"
    NETWORK_ERROR = "network_error"
    GENERATION_FAILED = "generation_failed"
    UPLOAD_FAILED = "upload_failed"
    TRANSCRIPTION_FAILED = "transcription_failed"
    UNKNOWN_ERROR = "unknown_error"


DEFAULT_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.AUTHENTICATION_ERROR: 401,
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.TIMEOUT_ERROR: 408,
    ErrorKind.NETWORK_ERROR: 503,
    ErrorKind.GENERATION_FAILED: 422,
    ErrorKind.UPLOAD_FAILED: 400,
    ErrorKind.TRANSCRIPTION_FAILED: 422,
    ErrorKind.UNKNOWN_ERROR: 500,
}

# Caller-facing messages for kinds whose raw upstream text is not useful
STANDARD_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION_ERROR: "Authentication failed or insufficient permissions",
    ErrorKind.QUOTA_EXCEEDED: "API quota exceeded or rate limit reached",
    ErrorKind.INVALID_REQUEST: "Invalid request parameters or format",
    ErrorKind.TIMEOUT_ERROR: "Request timed out",
    ErrorKind.NETWORK_ERROR: "Network connection error",
    ErrorKind.GENERATION_FAILED: (
        "Video generation failed due to content policy or safety restrictions"
    ),
}

# Checked in order; the first kind whose keywords or statuses match wins
_RULES: list[tuple[ErrorKind, tuple[str, ...], tuple[int, ...]]] = [
    (
        ErrorKind.AUTHENTICATION_ERROR,
        ("unauthorized", "unauthenticated", "authentication", "permission"),
        (401, 403),
    ),
    (
        ErrorKind.QUOTA_EXCEEDED,
        ("quota", "rate limit", "too many requests", "resource_exhausted", "resource exhausted"),
        (429,),
    ),
    (ErrorKind.INVALID_REQUEST, ("invalid", "bad request"), (400,)),
    (ErrorKind.TIMEOUT_ERROR, ("timeout", "timed out", "deadline"), (408, 504)),
    (
        ErrorKind.NETWORK_ERROR,
        ("network", "connection", "connect", "fetch", "econnrefused", "unavailable"),
        (502, 503),
    ),
    (ErrorKind.GENERATION_FAILED, ("generation failed", "content policy", "safety"), (422,)),
]


@dataclass(frozen=True)
class ClassifiedError:
    """A failure mapped onto the taxonomy.

    Attributes:
        kind: Taxonomy member.
        message: Caller-facing description.
        status_code: HTTP-style status code for the kind.
    """

    kind: ErrorKind
    message: str
    status_code: int

    @classmethod
    def of(cls, kind: ErrorKind, message: str | None = None) -> "ClassifiedError":
        """Build a classified error with the kind's default status code."""
        text = message or STANDARD_MESSAGES.get(kind) or kind.value
        return cls(kind=kind, message=text, status_code=DEFAULT_STATUS_CODES[kind])


def _message_of(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or error)
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(error)
    return text or type(error).__name__


def _numeric_status(error: Any) -> int | None:
    if isinstance(error, dict):
        candidates = [error.get("code"), error.get("status"), error.get("statusCode")]
    else:
        response = getattr(error, "response", None)
        candidates = [
            getattr(error, "status_code", None),
            getattr(error, "code", None),
            getattr(error, "status", None),
            getattr(response, "status_code", None),
        ]
    for candidate in candidates:
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


def _explicit_kind(error: Any) -> ErrorKind | None:
    raw = error.get("errorKind") if isinstance(error, dict) else getattr(error, "error_kind", None)
    if raw is None:
        return None
    try:
        return ErrorKind(raw)
    except ValueError:
        return None


def classify_error(
    error: Any, default: ErrorKind = ErrorKind.UNKNOWN_ERROR
) -> ClassifiedError:
    """Map any failure onto the error taxonomy.

    Args:
        error: Exception, error dict from the generation service, or any
            object with a useful ``str()``.
        default: Kind returned when nothing matches. The generation
            controller passes ``GENERATION_FAILED`` for errors the service
            attached to a finished job.

    Returns:
        ClassifiedError with the kind's default status code. Unknown
        failures keep their raw message; known kinds use the standard
        caller-facing message unless the error came from this project.
    """
    raw_message = _message_of(error)

    explicit = _explicit_kind(error)
    if explicit is not None:
        return ClassifiedError.of(explicit, raw_message)

    haystack = raw_message.lower()
    if not isinstance(error, dict):
        haystack = f"{haystack} {type(error).__name__.lower()}"
    status = _numeric_status(error)

    for kind, keywords, statuses in _RULES:
        if status in statuses or any(keyword in haystack for keyword in keywords):
            return ClassifiedError.of(kind)

    if default is ErrorKind.UNKNOWN_ERROR:
        return ClassifiedError.of(default, raw_message)
    return ClassifiedError.of(default)
