from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from providers.base import JobStatus, PredictionJob, PredictionService
from providers.replicate import FetchAborted, PredictionAPIError, ReplicatePredictions
from .config import RelayConfig
from .errors import (
    RelayBusy,
    RelayCancelled,
    RelayError,
    UpstreamAuthError,
    UpstreamJobFailed,
    UpstreamPollError,
    UpstreamSubmissionError,
    UpstreamTimeout,
)
from .metrics import relay_duration, relays_finished, relays_in_flight, relays_started, status_fetches
from .validators import validate_image_ref


logger = logging.getLogger(__name__)


class CancelToken:
    """Set once by whoever owns the caller's connection; waits wake up immediately."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Block up to `seconds`; True means the token fired."""
        return self._event.wait(max(0.0, seconds))


@dataclass(frozen=True)
class RelayResult:
    output: Any
    prediction_id: str
    polls: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"output": self.output}


class TryOnRelay:
    """
    Submit one try-on prediction and block until it reaches a terminal state.
    - Submission is a single call, never retried.
    - Polling waits on the cancel token so a disconnect or shutdown stops it early.
    - Total wait is bounded by config.max_wait.
    """

    def __init__(
        self,
        service: PredictionService,
        config: RelayConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.config = config
        self._clock = clock
        self._slots = threading.BoundedSemaphore(max(1, config.max_inflight))
        self._active: set[CancelToken] = set()
        self._active_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RelayConfig, session: Optional[requests.Session] = None) -> "TryOnRelay":
        return cls(ReplicatePredictions.from_config(config, session=session), config)

    def _acquire_slot(self) -> bool:
        if self.config.acquire_timeout <= 0:
            return self._slots.acquire(blocking=False)
        return self._slots.acquire(timeout=self.config.acquire_timeout)

    def cancel_all(self) -> int:
        with self._active_lock:
            tokens = list(self._active)
        for t in tokens:
            t.cancel()
        return len(tokens)

    def relay(
        self,
        subject_image_ref: Any,
        garment_image_ref: Any,
        cancel: Optional[CancelToken] = None,
    ) -> RelayResult:
        subject = validate_image_ref(subject_image_ref, "userImageUrl")
        garment = validate_image_ref(garment_image_ref, "garmentImageUrl")
        if not self.config.api_token:
            raise UpstreamAuthError("Prediction API token not configured")
        cancel = cancel or CancelToken()

        if not self._acquire_slot():
            relays_finished.labels(outcome=RelayBusy.code).inc()
            raise RelayBusy("Too many try-on requests in flight; retry shortly")
        with self._active_lock:
            self._active.add(cancel)
        relays_started.inc()
        relays_in_flight.inc()
        started = self._clock()
        try:
            result = self._run(subject, garment, cancel, started)
            relays_finished.labels(outcome="succeeded").inc()
            return result
        except RelayError as e:
            relays_finished.labels(outcome=e.code).inc()
            raise
        except Exception:
            relays_finished.labels(outcome=RelayError.code).inc()
            raise
        finally:
            relay_duration.observe(max(0.0, self._clock() - started))
            relays_in_flight.dec()
            with self._active_lock:
                self._active.discard(cancel)
            self._slots.release()

    def _run(self, subject: str, garment: str, cancel: CancelToken, started: float) -> RelayResult:
        if cancel.cancelled:
            raise RelayCancelled("Request cancelled before submission")
        job = self._submit(subject, garment)
        deadline = started + self.config.max_wait
        polls = 0
        while job.pending:
            delay = self._next_delay(polls)
            remaining = deadline - self._clock()
            if remaining <= 0 or delay >= remaining:
                if cancel.wait(max(0.0, remaining)):
                    raise RelayCancelled(f"Request cancelled while polling {job.id}")
                logger.warning(
                    "prediction timed out",
                    extra={"prediction_id": job.id, "status": job.raw_status, "polls": polls},
                )
                raise UpstreamTimeout(job.id, self._clock() - started)
            if cancel.wait(delay):
                raise RelayCancelled(f"Request cancelled while polling {job.id}")
            job = self._fetch(job.id, cancel, deadline, started)
            polls += 1
            logger.debug("prediction polled", extra={"prediction_id": job.id, "status": job.raw_status})

        elapsed = self._clock() - started
        if job.status == JobStatus.SUCCEEDED and job.output:
            logger.info(
                "prediction succeeded",
                extra={"prediction_id": job.id, "polls": polls, "elapsed": round(elapsed, 3)},
            )
            return RelayResult(output=job.output, prediction_id=job.id, polls=polls)
        if job.status == JobStatus.SUCCEEDED:
            raise UpstreamJobFailed(job.raw_status, "no output returned")
        logger.warning(
            "prediction failed",
            extra={"prediction_id": job.id, "status": job.raw_status, "polls": polls},
        )
        raise UpstreamJobFailed(job.raw_status or "unknown", job.error)

    def _next_delay(self, polls: int) -> float:
        cfg = self.config
        cap = max(cfg.poll_interval, cfg.poll_max_interval)
        try:
            delay = cfg.poll_interval * (cfg.poll_backoff ** polls)
        except OverflowError:
            return cap
        return min(delay, cap)

    def _submit(self, subject: str, garment: str) -> PredictionJob:
        payload = {
            "human_img": subject,
            "garm_img": garment,
            "garment_des": self.config.garment_description,
        }
        try:
            return self.service.create(self.config.model_version, payload)
        except PredictionAPIError as e:
            if e.auth_rejected:
                raise UpstreamAuthError(str(e), upstream_status=e.status_code) from e
            raise UpstreamSubmissionError(str(e), upstream_status=e.status_code) from e
        except requests.RequestException as e:
            raise UpstreamSubmissionError(f"Prediction API unreachable: {e}") from e

    def _fetch(self, prediction_id: str, cancel: CancelToken, deadline: float, started: float) -> PredictionJob:
        if cancel.cancelled:
            raise RelayCancelled(f"Request cancelled while polling {prediction_id}")
        status_fetches.inc()
        try:
            return self.service.get(prediction_id, cancel=cancel, time_left=lambda: deadline - self._clock())
        except (PredictionAPIError, FetchAborted, requests.RequestException) as e:
            if cancel.cancelled:
                raise RelayCancelled(f"Request cancelled while polling {prediction_id}") from e
            if self._clock() >= deadline:
                raise UpstreamTimeout(prediction_id, self._clock() - started) from e
            raise UpstreamPollError(f"Status fetch for {prediction_id} failed: {e}") from e
