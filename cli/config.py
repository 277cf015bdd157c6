from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from services.realtime_client import websocket_url

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 10.0
DEFAULT_TICK_SECONDS = 60.0

_BASE_URL_ENV = "API_BASE_URL"
_TOKEN_ENV = "API_TOKEN"
_TIMEOUT_ENV = "CLI_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    """Where the service lives and how to talk to it."""

    base_url: str = DEFAULT_BASE_URL
    token: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def realtime_url(self) -> str:
        return websocket_url(self.base_url)


def _normalise_base_url(raw: str) -> str:
    url = raw.strip().rstrip("/")
    if "://" not in url:
        url = f"http://{url}"
    return url


def _env_timeout() -> float:
    raw = (os.getenv(_TIMEOUT_ENV) or "").strip()
    try:
        seconds = float(raw)
    except ValueError:
        return DEFAULT_TIMEOUT
    return seconds if seconds > 0 else DEFAULT_TIMEOUT


def load_config(
    base_url: Optional[str] = None,
    token: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CLIConfig:
    """Explicit options win over the environment, which wins over defaults."""
    if token is None:
        token = os.getenv(_TOKEN_ENV)
    return CLIConfig(
        base_url=_normalise_base_url(base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL),
        token=(token or "").strip() or None,
        timeout=timeout if timeout is not None and timeout > 0 else _env_timeout(),
    )
