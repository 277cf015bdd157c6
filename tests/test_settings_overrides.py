from __future__ import annotations

from datetime import timedelta

import pytest

from models.records import WindowKind
from services.runtime import build_runtime, build_tracker
from settings import get_settings

_ENV_NAMES = (
    "AIRQ_STORE_PATH",
    "AIRQ_API_TOKEN",
    "AIRQ_SCHEDULER_ENABLED",
    "AIRQ_SCHEDULE_TICK_SECONDS",
    "AIRQ_HOURLY_MIN_INTERVAL_SECONDS",
    "AIRQ_DAILY_MIN_INTERVAL_SECONDS",
    "AIRQ_STORE_TIMEOUT_SECONDS",
    "AIRQ_SUBSCRIBER_QUEUE_SIZE",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults() -> None:
    settings = get_settings()

    assert settings.store_path == "./tmp/airq_store.json"
    assert settings.api_token is None
    assert settings.scheduler_enabled is True
    assert settings.schedule_tick_seconds == 60.0
    assert settings.hourly_min_interval_seconds == 3600.0
    assert settings.daily_min_interval_seconds == 86400.0
    assert settings.subscriber_queue_size == 100
    assert settings.log_level == "INFO"


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    store_path = tmp_path / "airq.json"
    monkeypatch.setenv("AIRQ_STORE_PATH", str(store_path))
    monkeypatch.setenv("AIRQ_API_TOKEN", " token-1 ")
    monkeypatch.setenv("AIRQ_SCHEDULER_ENABLED", "off")
    monkeypatch.setenv("AIRQ_SCHEDULE_TICK_SECONDS", "15")
    monkeypatch.setenv("AIRQ_DAILY_MIN_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("AIRQ_STORE_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("AIRQ_SUBSCRIBER_QUEUE_SIZE", "7")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = get_settings()
    runtime = build_runtime(settings)

    assert settings.api_token == "token-1"
    assert settings.scheduler_enabled is False
    assert settings.log_level == "DEBUG"
    assert runtime.store.persistence_path == store_path
    assert runtime.runner.tick_seconds == 15.0
    assert runtime.publisher.timeout == 2.5
    assert runtime.channel.queue_size == 7
    assert runtime.tracker.min_interval(WindowKind.daily) == timedelta(0)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("AIRQ_SCHEDULE_TICK_SECONDS", "-5")
    monkeypatch.setenv("AIRQ_HOURLY_MIN_INTERVAL_SECONDS", "soon")
    monkeypatch.setenv("AIRQ_SUBSCRIBER_QUEUE_SIZE", "0")
    monkeypatch.setenv("AIRQ_SCHEDULER_ENABLED", "maybe")
    monkeypatch.setenv("AIRQ_STORE_PATH", "   ")

    settings = get_settings()
    tracker = build_tracker(settings)

    assert settings.schedule_tick_seconds == 60.0
    assert settings.subscriber_queue_size == 100
    assert settings.scheduler_enabled is True
    assert settings.store_path is None
    assert tracker.min_interval(WindowKind.hourly) == timedelta(hours=1)
