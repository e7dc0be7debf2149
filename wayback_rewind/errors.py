from __future__ import annotations

from pydantic import BaseModel

from wayback_rewind.error_codes import (
    FETCH_TIMEOUT,
    INDEX_UNAVAILABLE,
    INVALID_INPUT,
    LLM_API_FAIL,
    LLM_TIMEOUT,
    RATE_LIMITED,
)


class ProblemDetails(BaseModel):
    status: int
    code: str
    error: str
    request_id: str


def problem(*, status: int, code: str, error: str, request_id: str) -> ProblemDetails:
    return ProblemDetails(status=status, code=code, error=error, request_id=request_id)


class RewindError(Exception):
    """Base for failures that map onto an API error envelope."""

    code = "internal_error"
    status = 500
    message = "Something went wrong"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.message)
        self.detail = detail or self.message


class InvalidInput(RewindError):
    code = INVALID_INPUT
    status = 400
    message = "Missing required parameters"


class IndexTimeout(RewindError):
    code = FETCH_TIMEOUT
    status = 504
    message = "The Wayback Machine is responding slowly right now. Please try again in a moment."


class RateLimited(RewindError):
    code = RATE_LIMITED
    status = 429
    message = "The Wayback Machine is rate-limiting requests. Please wait a moment and try again."

    def __init__(self, detail: str | None = None, *, attempts: int = 0):
        super().__init__(detail)
        self.attempts = attempts


class IndexUnavailable(RewindError):
    code = INDEX_UNAVAILABLE
    status = 502
    message = "Failed to fetch snapshots from the Wayback Machine"

    def __init__(self, detail: str | None = None, *, status_code: int | None = None):
        super().__init__(detail)
        self.status_code = status_code


class GenerationUnavailable(RewindError):
    """Raised by the OpenAI transport; the gateway turns it into a degraded result."""

    code = LLM_API_FAIL
    status = 502
    message = "Failed to generate insights"

    def __init__(self, detail: str | None = None, *, status_code: int | None = None):
        super().__init__(detail)
        self.status_code = status_code


class GenerationTimeout(GenerationUnavailable):
    code = LLM_TIMEOUT
    status = 504
    message = "The insight service is responding slowly right now"
