"""Error taxonomy shared by every pipeline stage."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for classified pipeline failures.

    ``retryable`` tells the caller whether re-running the same stage with
    the same input can succeed without outside intervention.
    """

    retryable = True


class AbortedByUser(PipelineError):
    """The operation's cancel token fired. Not a failure."""

    retryable = False

    def __init__(self, message: str = "cancelled by user") -> None:
        super().__init__(message)


class InvalidInputComposition(PipelineError):
    """Rejected before any network call; the user must supply other input."""

    retryable = False


class ValidationError(PipelineError):
    """A single field failed local validation and is dropped."""

    retryable = False

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(f"{field}: {reason} ({value!r})")
        self.field = field
        self.value = value
        self.reason = reason


class PersistenceError(PipelineError):
    """The record store failed; the in-memory record is kept."""


class ExtractionError(PipelineError):
    """Stage-1 text extraction failed (I/O or service)."""


class InferenceError(PipelineError):
    """The inference service failed or returned something unusable."""


class TransientNetworkError(InferenceError):
    """Service unreachable, rate limited or timed out."""


class ServiceConfigurationError(InferenceError):
    """Missing or invalid credentials. Retrying cannot help."""

    retryable = False


def is_retryable(exc: BaseException) -> bool:
    """Return whether *exc* should be offered a retry affordance."""
    if isinstance(exc, PipelineError):
        return exc.retryable
    return False
