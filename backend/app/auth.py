from __future__ import annotations

import hmac
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from .errors import Unauthorized


# Off by default: the relay sits behind a trusted network and the browser's
# bearer credential is passed through unchecked.
AUTH_REQUIRED = os.environ.get("AUTH_REQUIRED", "0") == "1"
API_KEY = os.environ.get("RELAY_API_KEY")


@dataclass
class Caller:
    uid: str


def _matches(candidate: Optional[str], expected: str) -> bool:
    return bool(candidate) and hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def require_auth(request: Request) -> Optional[Caller]:
    if not AUTH_REQUIRED:
        return None
    if not API_KEY:
        raise Unauthorized("Authentication required but RELAY_API_KEY is not configured")

    # 1) Bearer token
    authz = request.headers.get("authorization")
    if authz and authz.lower().startswith("bearer "):
        token = authz.split(" ", 1)[1].strip()
        if _matches(token, API_KEY):
            return Caller(uid="bearer")
        raise Unauthorized("Invalid bearer token")

    # 2) API key header fallback
    if _matches(request.headers.get("x-api-key"), API_KEY):
        return Caller(uid="api-key")

    raise Unauthorized("Authentication required")
