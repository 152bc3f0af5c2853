"""
Studio client and job errors.
"""

from __future__ import annotations

from typing import Optional


class StudioError(Exception):
    """Base class for everything raised by the companion."""

    error_code = "studio_error"


class StudioUnavailable(StudioError):
    """No Studio API base URL answered."""

    error_code = "studio_unavailable"


class StudioAPIError(StudioError):
    """The Studio API answered with an error status or a failed envelope."""

    error_code = "studio_api_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class JobFailed(StudioError):
    """Generation job reached a failed or cancelled state."""

    error_code = "job_failed"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class JobTimeout(StudioError):
    """Generation job did not finish in time."""

    error_code = "job_timeout"


class JobResultMissing(StudioError):
    """Job completed but carried no result URL."""

    error_code = "job_result_missing"
