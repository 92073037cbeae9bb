from __future__ import annotations

import os
from dataclasses import dataclass, asdict
from typing import Any, Optional

import yaml


CONFIG_PATH = os.environ.get("FITROOM_CONFIG", "configs/relay.yaml")

DEFAULT_ENDPOINT = "https://api.replicate.com/v1/predictions"
DEFAULT_MODEL_VERSION = "c871bb9b046607b680449ecbae55fd8c6d945e0a1948644bf2361b3d021d3ff4"


class Settings:
    def __init__(self, path: Optional[str] = None) -> None:
        self._cfg: dict[str, Any] = {}
        path = path or CONFIG_PATH
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                self._cfg = yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        # Env wins over YAML
        env_key = key.upper().replace(".", "_")
        if env_key in os.environ:
            return os.environ[env_key]

        # Dot path lookup in YAML
        parts = key.split(".")
        cur: Any = self._cfg
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur


settings = Settings()


@dataclass(frozen=True)
class RelayConfig:
    api_token: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT
    auth_scheme: str = "Bearer"
    model_version: str = DEFAULT_MODEL_VERSION
    garment_description: str = "A garment item"
    http_timeout: float = 30.0
    poll_interval: float = 1.0
    poll_backoff: float = 1.0
    poll_max_interval: float = 10.0
    max_wait: float = 300.0
    fetch_attempts: int = 3
    fetch_retry_wait: float = 0.5
    max_inflight: int = 8
    acquire_timeout: float = 0.0

    def __post_init__(self) -> None:
        if self.poll_interval < 0:
            raise ValueError("relay.poll_interval must not be negative")
        if self.poll_backoff < 1:
            raise ValueError("relay.poll_backoff must be >= 1")

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "RelayConfig":
        s = s or settings
        token = s.get("prediction.api_token") or os.environ.get("REPLICATE_API_TOKEN")
        return cls(
            api_token=token or None,
            endpoint=str(s.get("prediction.endpoint", DEFAULT_ENDPOINT)).rstrip("/"),
            auth_scheme=str(s.get("prediction.auth_scheme", "Bearer")),
            model_version=str(s.get("prediction.model_version", DEFAULT_MODEL_VERSION)),
            garment_description=str(s.get("prediction.garment_description", "A garment item")),
            http_timeout=float(s.get("prediction.http_timeout", 30.0)),
            poll_interval=float(s.get("relay.poll_interval", 1.0)),
            poll_backoff=float(s.get("relay.poll_backoff", 1.0)),
            poll_max_interval=float(s.get("relay.poll_max_interval", 10.0)),
            max_wait=float(s.get("relay.max_wait", 300.0)),
            fetch_attempts=int(s.get("relay.fetch_attempts", 3)),
            fetch_retry_wait=float(s.get("relay.fetch_retry_wait", 0.5)),
            max_inflight=int(s.get("relay.max_inflight", 8)),
            acquire_timeout=float(s.get("relay.acquire_timeout", 0.0)),
        )

    def public(self) -> dict[str, Any]:
        """Settings safe to expose over HTTP (token omitted)."""
        data = asdict(self)
        data.pop("api_token", None)
        data["api_token_configured"] = bool(self.api_token)
        return data
