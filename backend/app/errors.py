from __future__ import annotations

from typing import Any, Optional


class RelayError(Exception):
    """Base class for everything the relay reports back to its caller."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code}


class InvalidRequest(RelayError):
    status_code = 400
    code = "invalid_request"


class RelayBusy(RelayError):
    status_code = 503
    code = "relay_busy"


class RelayCancelled(RelayError):
    code = "cancelled"


class UpstreamSubmissionError(RelayError):
    code = "upstream_submission_error"

    def __init__(self, message: str, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamAuthError(UpstreamSubmissionError):
    code = "upstream_auth_error"


class UpstreamPollError(RelayError):
    code = "upstream_poll_error"


class UpstreamJobFailed(RelayError):
    code = "upstream_job_failed"

    def __init__(self, status: str, detail: Optional[str] = None) -> None:
        message = f"Prediction failed: {status}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.status = status
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["status"] = self.status
        return d


class UpstreamTimeout(RelayError):
    code = "upstream_timeout"

    def __init__(self, prediction_id: str, waited: float) -> None:
        super().__init__(f"Prediction {prediction_id} did not finish within {waited:.1f}s")
        self.prediction_id = prediction_id
        self.waited = waited


class Unauthorized(RelayError):
    status_code = 401
    code = "unauthorized"


class RateLimited(RelayError):
    status_code = 429
    code = "rate_limited"
