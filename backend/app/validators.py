from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from .errors import InvalidRequest


MISSING_PARAMS = "Missing required parameters"
ALLOWED_SCHEMES = ("http", "https", "data")


def is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_image_ref(value: Any, field: str) -> str:
    """Return the trimmed reference or raise InvalidRequest."""
    if is_missing(value):
        raise InvalidRequest(MISSING_PARAMS)
    if not isinstance(value, str):
        raise InvalidRequest(f"{field} must be a string URI")
    ref = value.strip()
    parsed = urlparse(ref)
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidRequest(f"{field} must be an http(s) or data URI")
    if parsed.scheme.lower() != "data" and not parsed.netloc:
        raise InvalidRequest(f"{field} has no host")
    return ref
