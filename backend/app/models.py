from typing import Any

from pydantic import BaseModel


class TryOnRequest(BaseModel):
    userImageUrl: Any = None
    garmentImageUrl: Any = None


class TryOnResponse(BaseModel):
    output: Any


class ErrorResponse(BaseModel):
    error: str
    code: str
    status: str | None = None
