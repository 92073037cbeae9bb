import pytest

from providers.base import JobStatus, PredictionJob, normalize_status
from backend.app.relay import CancelToken
from providers.replicate import FetchAborted, PredictionAPIError, ReplicatePredictions
from conftest import ENDPOINT, FakeResponse, FakeSession, job


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("starting", JobStatus.QUEUED),
        ("queued", JobStatus.QUEUED),
        ("processing", JobStatus.RUNNING),
        ("Running", JobStatus.RUNNING),
        ("succeeded", JobStatus.SUCCEEDED),
        ("failed", JobStatus.FAILED),
        ("canceled", JobStatus.FAILED),
        ("aborted", JobStatus.FAILED),
        ("", JobStatus.UNKNOWN),
        (None, JobStatus.UNKNOWN),
        ("exploded", JobStatus.UNKNOWN),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) is expected


def test_pending_only_for_queued_and_running():
    assert PredictionJob("a", "starting").pending
    assert PredictionJob("a", "processing").pending
    assert not PredictionJob("a", "succeeded").pending
    assert not PredictionJob("a", "weird").pending


def test_payload_without_id_rejected():
    with pytest.raises(ValueError):
        PredictionJob.from_payload({"status": "starting"})
    with pytest.raises(ValueError):
        PredictionJob.from_payload(["not", "a", "dict"])


def test_auth_scheme_and_status_url():
    session = FakeSession(post=[job("starting", id="abc")], get=[job("succeeded", "https://x/o.png", id="abc")])
    client = ReplicatePredictions("tok", ENDPOINT + "/", auth_scheme="Token", session=session, timeout=7)
    created = client.create("v1", {"human_img": "a"})
    fetched = client.get(created.id)
    assert session.posts[0]["headers"]["Authorization"] == "Token tok"
    assert session.posts[0]["timeout"] == 7
    assert session.gets[0]["url"] == f"{ENDPOINT}/abc"
    assert fetched.output == "https://x/o.png"


def test_no_authorization_header_without_token():
    session = FakeSession(post=[job("starting")])
    ReplicatePredictions(None, ENDPOINT, session=session).create("v1", {})
    assert "Authorization" not in session.posts[0]["headers"]


def test_create_is_single_attempt():
    session = FakeSession(post=[FakeResponse(503, {}), job("starting")])
    client = ReplicatePredictions("tok", ENDPOINT, session=session, fetch_attempts=5, fetch_retry_wait=0)
    with pytest.raises(PredictionAPIError) as ei:
        client.create("v1", {})
    assert ei.value.status_code == 503
    assert len(session.posts) == 1


def test_get_retries_rate_limit():
    session = FakeSession(get=[FakeResponse(429, {}), job("processing")])
    client = ReplicatePredictions("tok", ENDPOINT, session=session, fetch_attempts=2, fetch_retry_wait=0)
    assert client.get("p1").raw_status == "processing"
    assert len(session.gets) == 2


def test_error_classification():
    assert PredictionAPIError("x", 401).auth_rejected
    assert not PredictionAPIError("x", 500).auth_rejected
    assert PredictionAPIError("x", 500).transient
    assert PredictionAPIError("x").transient
    assert not PredictionAPIError("x", 404).transient


class _Waits:
    def __init__(self):
        self.cancelled = False
        self.seen = []

    def wait(self, seconds):
        self.seen.append(seconds)
        return False


def test_get_timeout_capped_by_time_left():
    session = FakeSession(get=[job("processing")])
    client = ReplicatePredictions("tok", ENDPOINT, session=session, timeout=30.0)
    client.get("p1", time_left=lambda: 2.5)
    assert session.gets[0]["timeout"] == 2.5


def test_get_with_budget_spent_makes_no_request():
    session = FakeSession(get=[job("processing")])
    client = ReplicatePredictions("tok", ENDPOINT, session=session)
    with pytest.raises(FetchAborted):
        client.get("p1", time_left=lambda: 0.0)
    assert session.gets == []


def test_get_on_cancelled_token_makes_no_request():
    session = FakeSession(get=[job("processing")])
    token = CancelToken()
    token.cancel()
    with pytest.raises(FetchAborted):
        ReplicatePredictions("tok", ENDPOINT, session=session).get("p1", cancel=token)
    assert session.gets == []


def test_retry_sleep_waits_on_token_and_respects_budget():
    session = FakeSession(get=[FakeResponse(503, {}), job("processing")])
    client = ReplicatePredictions("tok", ENDPOINT, session=session, fetch_attempts=2, fetch_retry_wait=1.0)
    waits = _Waits()
    assert client.get("p1", cancel=waits, time_left=lambda: 0.25).raw_status == "processing"
    assert waits.seen == [0.25]
    assert len(session.gets) == 2
