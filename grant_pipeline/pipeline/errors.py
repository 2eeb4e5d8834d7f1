"""
Stage failure taxonomy.

Every failure a stage can surface to its caller is a StageError subclass
carrying a machine-readable ``kind``, the HTTP status that reports it and a
set of diagnostic fields that end up in the JSON error body. ``retryable``
tells callers whether the same request may succeed later; nothing here
retries on its own.
"""

from typing import Any, Dict, Optional


class StageError(Exception):
    kind = "InternalError"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "kind": self.kind, "retryable": self.retryable, **self.details}


class MethodNotAllowed(StageError):
    kind = "MethodNotAllowed"
    status_code = 405


class StageValidationError(StageError):
    """A required field is missing, empty or of the wrong type."""
    kind = "ValidationError"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class StageTimeout(StageError):
    kind = "Timeout"
    status_code = 408
    retryable = True

    def __init__(self, stage: str, elapsed_s: float, timeout_s: float):
        super().__init__(
            f"{stage} timed out after {elapsed_s:.1f}s (limit {timeout_s:g}s) - please try again",
            stage=stage,
            elapsed_s=round(elapsed_s, 3),
            timeout_s=timeout_s,
        )


class UpstreamRateLimited(StageError):
    kind = "UpstreamRateLimited"
    status_code = 429
    retryable = True


class EmptyResponse(StageError):
    kind = "EmptyResponse"
    status_code = 500


class UpstreamError(StageError):
    kind = "UpstreamError"
    status_code = 500


class InternalError(StageError):
    kind = "InternalError"
    status_code = 500


class CompressionFailure(StageError):
    """Soft failure: callers degrade to hard truncation and never surface it."""
    kind = "CompressionFailure"
    status_code = 500
