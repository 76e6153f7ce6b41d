"""
Exception types shared across the pipeline.

Quality rejections are not exceptions: the gate reports them as a
QualityResult with passed=False.
"""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class InputError(PipelineError, ValueError):
    """Missing or empty image/text. Rejected immediately, never retried."""


class TransientServiceError(PipelineError):
    """Network failure, 5xx or rate limit from an external service."""


class ServiceTimeoutError(TransientServiceError):
    """An external call did not answer within its timeout."""


class InvalidResponseError(PipelineError):
    """An external service answered with a payload we cannot use."""


class FatalRunError(PipelineError):
    """Unexpected failure of the batch controller itself."""
