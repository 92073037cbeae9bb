from __future__ import annotations

import os
import threading
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel

# Local stand-in for the predictions API: each job advances one step per status read.
STEPS = ("starting", "processing", "succeeded")
POLLS_TO_FINISH = int(os.environ.get("FAKE_POLLS_TO_FINISH", "2"))
FAKE_TOKEN = os.environ.get("FAKE_PREDICTION_TOKEN")
OUTPUT_BASE = os.environ.get("FAKE_OUTPUT_BASE", "https://example.invalid/outputs")

app = FastAPI(title="Fitroom Fake Prediction Service")

_jobs: dict[str, dict[str, Any]] = {}
_lock = threading.Lock()


class PredictionCreate(BaseModel):
    version: str
    input: dict[str, Any]


def _check_auth(authorization: Optional[str]) -> None:
    if not FAKE_TOKEN:
        return
    if not authorization or authorization.split(" ", 1)[-1] != FAKE_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")


def _view(job: dict[str, Any]) -> dict[str, Any]:
    return {k: job[k] for k in ("id", "version", "status", "output", "error")}


def _advance(job: dict[str, Any]) -> None:
    if job["status"] in ("succeeded", "failed"):
        return
    job["polls"] += 1
    if job["polls"] < POLLS_TO_FINISH:
        job["status"] = "processing"
        return
    if job["input"].get("garment_des") == "fail":
        job["status"] = "failed"
        job["error"] = "garment could not be transferred"
    else:
        job["status"] = "succeeded"
        job["output"] = f"{OUTPUT_BASE}/{job['id']}.png"


@app.post("/v1/predictions", status_code=201)
def create_prediction(body: PredictionCreate, authorization: Optional[str] = Header(None)):
    _check_auth(authorization)
    missing = [k for k in ("human_img", "garm_img") if not body.input.get(k)]
    if missing:
        raise HTTPException(status_code=422, detail=f"missing input: {', '.join(missing)}")
    job = {
        "id": uuid.uuid4().hex,
        "version": body.version,
        "input": body.input,
        "status": STEPS[0],
        "output": None,
        "error": None,
        "polls": 0,
    }
    with _lock:
        _jobs[job["id"]] = job
    return _view(job)


@app.get("/v1/predictions/{prediction_id}")
def get_prediction(prediction_id: str, authorization: Optional[str] = Header(None)):
    _check_auth(authorization)
    with _lock:
        job = _jobs.get(prediction_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Prediction not found")
        _advance(job)
        return _view(job)
