"""Exception hierarchy and error categorization for the ingestion pipeline."""

from .models import ErrorCategory


class PipelineError(Exception):
    """Base exception for all pipeline errors."""


class ConfigError(PipelineError):
    """Invalid or missing configuration."""


class ProgressError(PipelineError):
    """Progress store read/write error."""


class TransportError(PipelineError):
    """Listing or download from the remote source failed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class DiskSpaceError(PipelineError):
    """Not enough local space to fetch a file."""


class ExtractionError(PipelineError):
    """Text could not be extracted from a document."""


class InferenceError(PipelineError):
    """The language-model backend failed or answered with garbage."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LaneClosedError(PipelineError):
    """Enqueue attempted on a closed lane queue."""


class LaneFullError(PipelineError):
    """Enqueue rejected because the lane queue is at capacity."""


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Map an exception to an error category.

    Transport, disk space, and inference failures are transient (the next
    run may succeed). Everything else -- unreadable documents, bugs -- is
    permanent.
    """
    if isinstance(exc, (TransportError, DiskSpaceError, InferenceError, LaneFullError)):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.PERMANENT
