"""Error kinds raised or reported while driving a scan job."""
from __future__ import annotations


class ScanError(Exception):
    """Base class; ``detail`` is the operator-facing message, unmodified."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidInput(ScanError):
    """The range expression is empty or malformed. Nothing was sent."""


class BackendError(ScanError):
    """Transport failure or error response from the scan backend."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.status_code = status_code


class SubmissionError(ScanError):
    """The backend did not accept the job-creation request."""


class PollError(ScanError):
    """A status query failed, or the backend reported the job as failed."""


class ProtocolViolation(ScanError):
    """A status response outside the known set of values."""
