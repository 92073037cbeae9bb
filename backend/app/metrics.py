from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

relays_started = Counter("fitroom_relays_started_total", "Try-on relays accepted for submission")
relays_finished = Counter("fitroom_relays_finished_total", "Try-on relays finished", ["outcome"])
relays_in_flight = Gauge("fitroom_relays_in_flight", "Relays currently submitting or polling")
status_fetches = Counter("fitroom_status_fetches_total", "Prediction status fetches issued")
relay_duration = Histogram(
    "fitroom_relay_duration_seconds",
    "Wall time from submission to terminal state",
    buckets=(1, 5, 10, 20, 30, 60, 120, 300, 600),
)
