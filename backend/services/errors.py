"""
Error taxonomy for the candidate ranking pipeline.

Every error carries a user-facing message and renders to the
{"success": false, "error": ...} payload the API returns.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class for all expected pipeline failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class EmbeddingError(PipelineError):
    """The embedding provider returned nothing usable."""

    status_code = 502


class VectorIndexError(PipelineError):
    """The vector index could not be read or written."""

    status_code = 502


class ParseError(PipelineError):
    """LLM output for resume structuring could not be decoded or validated."""

    status_code = 422


class AnalysisError(PipelineError):
    """Portfolio analysis could not produce a result."""

    status_code = 502


class ValidationError(PipelineError, ValueError):
    """Malformed caller input."""

    status_code = 400


class NotFoundError(PipelineError):
    """A job, candidate or portfolio does not exist."""

    status_code = 404


class RateLimitError(PipelineError):
    """A third-party provider throttled us; callers should back off."""

    status_code = 429

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_response(self) -> Dict[str, Any]:
        payload = super().to_response()
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload


class GitHubError(PipelineError):
    """Non-success response from the GitHub API."""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StatusTransitionError(PipelineError):
    """Illegal processing-stage transition."""

    status_code = 409
