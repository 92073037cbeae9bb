from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import Request
import redis

from .errors import RateLimited


logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/2")
RATE_LIMIT_ENABLED = os.environ.get("RATE_LIMIT_ENABLED", "0") == "1"
RL_LIMIT = int(os.environ.get("RL_LIMIT", "10"))  # relays per window per client
RL_WINDOW = int(os.environ.get("RL_WINDOW", "60"))  # window (seconds)

_redis: Optional[redis.Redis] = None
if RATE_LIMIT_ENABLED:
    _redis = redis.from_url(REDIS_URL)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit(request: Request) -> None:
    if not RATE_LIMIT_ENABLED or _redis is None:
        return
    ip = client_key(request)
    key = f"rl:{request.method}:{request.url.path}:{ip}"
    try:
        # Fixed window: counter with TTL set by the first hit
        count = _redis.incr(key, 1)
        if int(count) == 1:
            _redis.expire(key, RL_WINDOW)
    except redis.RedisError as e:
        # Limiter outage must not take the relay down with it.
        logger.warning("rate limiter unavailable: %s", e, extra={"client": ip})
        return
    if int(count) > RL_LIMIT:
        raise RateLimited("Too Many Requests")
