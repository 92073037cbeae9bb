from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, stop_any, wait_exponential

from providers.base import PredictionJob


logger = logging.getLogger(__name__)


class PredictionAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def auth_rejected(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def transient(self) -> bool:
        # No status means the response body was unusable; worth another read.
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class FetchAborted(Exception):
    """Raised before a status fetch that the caller no longer wants."""


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    return isinstance(exc, PredictionAPIError) and exc.transient


class ReplicatePredictions:
    """
    Client for a Replicate-style predictions API.
    - create() is a single POST; it is never retried so one request maps to one job.
    - get() is an idempotent read and is retried on transport errors and 5xx.
    """

    def __init__(
        self,
        api_token: Optional[str],
        endpoint: str,
        auth_scheme: str = "Bearer",
        timeout: float = 30.0,
        fetch_attempts: int = 3,
        fetch_retry_wait: float = 0.5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_token = api_token
        self.endpoint = endpoint.rstrip("/")
        self.auth_scheme = auth_scheme
        self.timeout = timeout
        self.fetch_attempts = max(1, int(fetch_attempts))
        self.fetch_retry_wait = fetch_retry_wait
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: Any, session: Optional[requests.Session] = None) -> "ReplicatePredictions":
        return cls(
            api_token=cfg.api_token,
            endpoint=cfg.endpoint,
            auth_scheme=cfg.auth_scheme,
            timeout=cfg.http_timeout,
            fetch_attempts=cfg.fetch_attempts,
            fetch_retry_wait=cfg.fetch_retry_wait,
            session=session,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"{self.auth_scheme} {self.api_token}"
        return headers

    @staticmethod
    def _parse(resp: requests.Response) -> PredictionJob:
        if resp.status_code >= 400:
            reason = getattr(resp, "reason", "") or ""
            raise PredictionAPIError(
                f"Prediction API error: {resp.status_code} {reason} {resp.text[:200]}".strip(),
                status_code=resp.status_code,
            )
        try:
            return PredictionJob.from_payload(resp.json())
        except ValueError as e:
            raise PredictionAPIError(f"Unexpected response from prediction API: {e}") from e

    def create(self, version: str, input: dict) -> PredictionJob:
        resp = self.session.post(
            self.endpoint,
            json={"version": version, "input": input},
            headers=self._headers(),
            timeout=self.timeout,
        )
        job = self._parse(resp)
        logger.info("prediction created", extra={"prediction_id": job.id, "status": job.raw_status})
        return job

    def _get_once(
        self,
        prediction_id: str,
        cancel: Any = None,
        time_left: Optional[Callable[[], float]] = None,
    ) -> PredictionJob:
        timeout = self.timeout
        if cancel is not None and cancel.cancelled:
            raise FetchAborted(f"status fetch for {prediction_id} cancelled")
        if time_left is not None:
            left = time_left()
            if left <= 0:
                raise FetchAborted(f"no time left to fetch {prediction_id}")
            timeout = min(timeout, left)
        resp = self.session.get(
            f"{self.endpoint}/{prediction_id}",
            headers=self._headers(),
            timeout=timeout,
        )
        return self._parse(resp)

    def get(
        self,
        prediction_id: str,
        cancel: Any = None,
        time_left: Optional[Callable[[], float]] = None,
    ) -> PredictionJob:
        """
        Fetch the current prediction state.
        `cancel` (anything with .cancelled and .wait(seconds)) and `time_left`
        bound the retries: no further attempt once the token fires or the
        budget runs out, and backoff sleeps never outlast either.
        """

        def _aborted(retry_state) -> bool:
            if cancel is not None and cancel.cancelled:
                return True
            return time_left is not None and time_left() <= 0

        def _sleep(seconds: float) -> None:
            if time_left is not None:
                seconds = min(seconds, max(0.0, time_left()))
            if cancel is not None:
                cancel.wait(seconds)
            else:
                time.sleep(seconds)

        retryer = Retrying(
            reraise=True,
            stop=stop_any(stop_after_attempt(self.fetch_attempts), _aborted),
            wait=wait_exponential(multiplier=self.fetch_retry_wait, max=8),
            retry=retry_if_exception(_is_transient),
            sleep=_sleep,
        )
        return retryer(self._get_once, prediction_id, cancel, time_left)
