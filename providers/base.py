from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Replicate reports starting/processing; other predictions APIs use queued/running.
_STATUS_ALIASES = {
    "starting": JobStatus.QUEUED,
    "queued": JobStatus.QUEUED,
    "pending": JobStatus.QUEUED,
    "processing": JobStatus.RUNNING,
    "running": JobStatus.RUNNING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
    "aborted": JobStatus.FAILED,
}


def normalize_status(raw: Optional[str]) -> JobStatus:
    if not raw:
        return JobStatus.UNKNOWN
    return _STATUS_ALIASES.get(str(raw).strip().lower(), JobStatus.UNKNOWN)


@dataclass(frozen=True)
class PredictionJob:
    id: str
    raw_status: str
    output: Any = None
    error: Optional[str] = None

    @property
    def status(self) -> JobStatus:
        return normalize_status(self.raw_status)

    @property
    def pending(self) -> bool:
        return self.status in (JobStatus.QUEUED, JobStatus.RUNNING)

    @classmethod
    def from_payload(cls, data: Any) -> "PredictionJob":
        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError("prediction payload has no id")
        err = data.get("error")
        return cls(
            id=str(data["id"]),
            raw_status=str(data.get("status") or ""),
            output=data.get("output"),
            error=str(err) if err else None,
        )


class PredictionService(Protocol):
    def create(self, version: str, input: dict) -> PredictionJob: ...

    def get(
        self,
        prediction_id: str,
        cancel: Any = None,
        time_left: Optional[Callable[[], float]] = None,
    ) -> PredictionJob: ...
