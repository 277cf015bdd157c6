from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_PATH_ENV = "AIRQ_STORE_PATH"
_API_TOKEN_ENV = "AIRQ_API_TOKEN"
_SCHEDULER_ENABLED_ENV = "AIRQ_SCHEDULER_ENABLED"
_TICK_SECONDS_ENV = "AIRQ_SCHEDULE_TICK_SECONDS"
_HOURLY_INTERVAL_ENV = "AIRQ_HOURLY_MIN_INTERVAL_SECONDS"
_DAILY_INTERVAL_ENV = "AIRQ_DAILY_MIN_INTERVAL_SECONDS"
_STORE_TIMEOUT_ENV = "AIRQ_STORE_TIMEOUT_SECONDS"
_QUEUE_SIZE_ENV = "AIRQ_SUBSCRIBER_QUEUE_SIZE"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    store_path: Optional[str]
    api_token: Optional[str]
    scheduler_enabled: bool
    schedule_tick_seconds: float
    hourly_min_interval_seconds: float
    daily_min_interval_seconds: float
    store_timeout_seconds: float
    subscriber_queue_size: int
    log_level: str


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    return default


def _read_float(name: str, default: float, allow_zero: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed > 0 or (allow_zero and parsed == 0):
        return parsed
    return default


def _read_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/airq_store.json"),
        api_token=_read_optional_env(_API_TOKEN_ENV, None),
        scheduler_enabled=_read_bool(_SCHEDULER_ENABLED_ENV, True),
        schedule_tick_seconds=_read_float(_TICK_SECONDS_ENV, 60.0),
        hourly_min_interval_seconds=_read_float(_HOURLY_INTERVAL_ENV, 3600.0, allow_zero=True),
        daily_min_interval_seconds=_read_float(_DAILY_INTERVAL_ENV, 86400.0, allow_zero=True),
        store_timeout_seconds=_read_float(_STORE_TIMEOUT_ENV, 10.0),
        subscriber_queue_size=_read_int(_QUEUE_SIZE_ENV, 100),
        log_level=_read_log_level("INFO"),
    )
