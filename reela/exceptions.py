"""Shared exceptions for the application.

This module contains exception classes used across multiple services
to avoid cross-domain dependencies between services. Exceptions that
describe a failure of a request carry an ``error_kind`` field which the
error classifier honours before falling back to keyword matching.
"""


class ConfigurationError(Exception):
    """Raised when required configuration is missing.

    This error indicates a configuration problem that prevents
    video generation from proceeding (e.g., no API key configured
    for the generation service, or no bucket configured for storage).
    """

    pass


class InvalidStateTransitionError(Exception):
    """Raised when attempting an invalid state transition in the JobState workflow.

    Only valid transitions defined in ``JOB_STATE_TRANSITIONS`` are allowed.

    Attributes:
        message: Human-readable error message describing the invalid transition.
        from_state: The current JobState before the attempted transition.
        to_state: The JobState that was attempted but is not valid.

    Example:
        >>> handle.transition_to(JobState.SUCCEEDED)  # still SUBMITTED
        InvalidStateTransitionError: Invalid transition: submitted → succeeded
    """

    def __init__(self, message: str, from_state: "JobState", to_state: "JobState"):
        """Initialize InvalidStateTransitionError with transition details.

        Args:
            message: Human-readable error message.
            from_state: Current state before transition attempt.
            to_state: Target state that was attempted.
        """
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message)

    def __str__(self) -> str:
        """Return detailed error message with transition context.

        Returns:
            Error message including from_state and to_state values for debugging.
        """
        base_message = super().__str__()
        return f"{base_message} (from={self.from_state.value}, to={self.to_state.value})"


class AttachmentValidationError(Exception):
    """Raised when a generation request or its attachment fails validation.

    Covers missing prompts, attachments with neither or both locators,
    unknown or expired buffer pointers, empty payloads and payloads above
    the per-kind size ceiling.
    """

    error_kind = "invalid_request"


class UpstreamFetchError(Exception):
    """Raised when an attachment referenced by remote URL cannot be fetched.

    Attributes:
        url: The remote locator that failed.
        status_code: HTTP status returned by the remote host, if any.
    """

    error_kind = "network_error"

    def __init__(self, message: str, url: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class ArtifactStorageError(Exception):
    """Raised when a generated artifact cannot be uploaded or signed.

    An artifact without a retrievable backing object is worthless to the
    caller, so this is always fatal to the request.
    """

    error_kind = "upload_failed"


class TranscriptionError(Exception):
    """Raised by the transcription client when audio cannot be transcribed.

    Never surfaced to the caller: the preprocessor degrades to the original
    prompt when it sees this error.
    """

    error_kind = "transcription_failed"


class EventStreamClosedError(Exception):
    """Raised when an event is written to a channel that violates its invariants.

    A channel accepts exactly one terminal event and a non-decreasing
    progress sequence; anything else is a programming error.
    """

    pass
