"""Custom exceptions for the render worker.

Every error raised by the worker carries a machine-readable code so that the
message persisted on a failed step can be traced back to its origin.
"""


class RenderWorkerError(Exception):
    """Base exception for all render worker errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        super().__init__(self.message)


class ConfigurationError(RenderWorkerError):
    """Required settings are missing for the requested operation."""

    code = "CONFIGURATION_ERROR"
    message = "Worker is not configured for this operation"


class InvalidJobPayloadError(RenderWorkerError):
    """Queue payload failed validation."""

    code = "INVALID_JOB_PAYLOAD"
    message = "Job payload is invalid"


class FilterGraphError(RenderWorkerError):
    """Filter graph failed structural validation."""

    code = "FILTER_GRAPH_INVALID"
    message = "Filter graph is invalid"


class EncoderError(RenderWorkerError):
    """FFmpeg exited with an error."""

    code = "ENCODER_FAILED"
    message = "FFmpeg failed"

    def __init__(self, message: str | None = None, *, stderr_tail: str = "", code: str | None = None):
        self.stderr_tail = stderr_tail
        super().__init__(message, code=code)


class EncoderTimeoutError(EncoderError):
    """FFmpeg exceeded its wall-clock budget."""

    code = "ENCODER_TIMEOUT"
    message = "FFmpeg timed out"


class RemoteRenderError(RenderWorkerError):
    """Remote renderer reported a failure."""

    code = "REMOTE_RENDER_FAILED"
    message = "Remote render failed"


class RemoteRenderTimeoutError(RemoteRenderError):
    """Remote renderer did not finish before the deadline."""

    code = "REMOTE_RENDER_TIMEOUT"
    message = "Remote render timed out"


class InsufficientCreditsError(RenderWorkerError):
    """User balance does not cover the deduction."""

    code = "INSUFFICIENT_CREDITS"
    message = "Insufficient credits"


class InputTooLargeError(RenderWorkerError):
    """Downloaded input exceeds the size accepted for local processing."""

    code = "INPUT_TOO_LARGE"
    message = "Input file exceeds 100MB limit"
