from typing import Any, Optional

import requests


class FitroomError(Exception):
    def __init__(self, message: str, status_code: int, code: Optional[str] = None, status: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.code in ("upstream_timeout", "relay_busy", "rate_limited")


class FitroomClient:
    def __init__(self, base_url: str = "http://127.0.0.1:8000", api_key: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def try_on(self, user_image_url: str, garment_image_url: str, timeout: float = 330.0) -> Any:
        """Run one try-on and return the output reference; blocks until the relay answers."""
        r = requests.post(
            f"{self.base_url}/v1/virtual-tryon",
            json={"userImageUrl": user_image_url, "garmentImageUrl": garment_image_url},
            headers=self._headers(),
            timeout=timeout,
        )
        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code != 200:
            raise FitroomError(
                data.get("error") or f"HTTP {r.status_code}",
                status_code=r.status_code,
                code=data.get("code"),
                status=data.get("status"),
            )
        return data["output"]

    def health(self) -> dict:
        r = requests.get(f"{self.base_url}/health", timeout=10)
        r.raise_for_status()
        return r.json()
