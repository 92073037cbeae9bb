"""Shared fakes for the relay tests.

The prediction API is replaced by an in-memory requests-like session and
polling waits run against a fake clock, so no test sleeps or hits the network.
"""

from __future__ import annotations

import os
import sys
from dataclasses import replace
from typing import Any, Optional

import pytest

# Project root = parent directory of this tests/ folder
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from backend.app.config import RelayConfig  # noqa: E402
from backend.app.relay import CancelToken, TryOnRelay  # noqa: E402
from providers.replicate import ReplicatePredictions  # noqa: E402


ENDPOINT = "https://predictions.test/v1/predictions"


class FakeResponse:
    def __init__(self, status_code: int = 200, data: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._data = data
        self.text = text if text is not None else str(data)
        self.reason = "Error" if status_code >= 400 else "OK"

    def json(self) -> Any:
        if self._data is None:
            raise ValueError("No JSON object could be decoded")
        return self._data


def job(status: str, output: Any = None, id: str = "p1", error: Optional[str] = None) -> FakeResponse:
    return FakeResponse(200, {"id": id, "status": status, "output": output, "error": error})


class FakeSession:
    """Replays queued responses; an exception instance in the queue is raised instead."""

    def __init__(self, post=None, get=None, get_default: Optional[FakeResponse] = None) -> None:
        self.post_queue = list(post or [])
        self.get_queue = list(get or [])
        self.get_default = get_default
        self.posts: list[dict] = []
        self.gets: list[dict] = []

    @staticmethod
    def _next(queue: list, default: Optional[FakeResponse]):
        item = queue.pop(0) if queue else default
        if item is None:
            raise AssertionError("unexpected request")
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return self._next(self.post_queue, None)

    def get(self, url, headers=None, timeout=None):
        self.gets.append({"url": url, "headers": headers, "timeout": timeout})
        return self._next(self.get_queue, self.get_default)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingToken(CancelToken):
    """Advances the fake clock instead of blocking; optionally fires after N waits."""

    def __init__(self, clock: FakeClock, cancel_after: Optional[int] = None) -> None:
        super().__init__()
        self.clock = clock
        self.cancel_after = cancel_after
        self.waits: list[float] = []

    def wait(self, seconds: float) -> bool:
        if self.cancel_after is not None and len(self.waits) >= self.cancel_after:
            self.cancel()
        self.waits.append(seconds)
        if not self.cancelled:
            self.clock.advance(seconds)
        return self.cancelled


TEST_CONFIG = RelayConfig(
    api_token="test-token",
    endpoint=ENDPOINT,
    poll_interval=1.0,
    max_wait=300.0,
    fetch_retry_wait=0.0,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_relay(clock):
    def _make(session: FakeSession, **overrides) -> TryOnRelay:
        cfg = replace(TEST_CONFIG, **overrides)
        return TryOnRelay(ReplicatePredictions.from_config(cfg, session=session), cfg, clock=clock)

    return _make


@pytest.fixture
def token(clock) -> RecordingToken:
    return RecordingToken(clock)
