"""Exception taxonomy for the workflow result pipeline.

Every pipeline exception carries the HTTP status the entry point answers
with. A blocked commit is a domain outcome, not an exception, and is
returned as ``status: fail`` with HTTP 200.
"""


class PipelineError(Exception):
    """Base exception for pipeline failures."""

    http_status = 500

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class InvalidSubmission(PipelineError):
    """The inbound payload is missing identifiers the pipeline keys on."""

    http_status = 400


class ConfigNotFound(PipelineError):
    """No default workflow binding or AI config for the submission."""

    http_status = 400


class TaskExecutionFailed(PipelineError):
    """A single extraction task failed. Recovered by the task runner."""


class AttachmentFetchFailed(PipelineError):
    """An attachment could not be downloaded."""


class InferenceFailed(PipelineError):
    """An inference call errored, timed out or returned non-JSON output."""


class ParseFailed(PipelineError):
    """The AI parser call failed; nothing can be committed."""


class ValidateCallFailed(PipelineError):
    """The AI validator call failed; the submission fails closed."""


class CommitFailed(PipelineError):
    """The canonical write was rolled back."""
