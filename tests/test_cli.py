from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import DEFAULT_TIMEOUT, load_config
from models.records import Aggregate, AirQualityStatus, Reading, WindowKind
from services.errors import TransientStoreError
from services.publisher import PublishOutcome, PublishResult

READING = Reading(
    device_id="device-7",
    timestamp=datetime(2024, 1, 1, 10, 15, tzinfo=timezone.utc),
    temperature=21.5,
    humidity=52.0,
    tvoc=130.0,
)

AGGREGATE = Aggregate(
    kind=WindowKind.hourly,
    window_end=datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc),
    avg_temperature=31.2,
    avg_humidity=55.0,
    avg_tvoc=140.0,
    air_quality_status=AirQualityStatus.bad,
)


class StubClient:
    def __init__(self, config, publish_result: Optional[PublishResult] = None) -> None:
        self.config = config
        self.latest: Optional[Reading] = READING
        self.averages_calls: List[tuple[WindowKind, Optional[int]]] = []
        self.readings_calls: List[WindowKind] = []
        self.ingested: List[Reading] = []
        self.publish_calls: List[WindowKind] = []
        self.publish_result = publish_result or PublishResult(
            kind=WindowKind.hourly,
            outcome=PublishOutcome.published,
            window_end=AGGREGATE.window_end,
            aggregate=AGGREGATE,
        )
        self.closed = False

    def latest_reading(self) -> Optional[Reading]:
        return self.latest

    def readings(self, kind: WindowKind) -> List[Reading]:
        self.readings_calls.append(kind)
        return [READING]

    def averages(self, kind: WindowKind, limit: Optional[int] = None) -> List[Aggregate]:
        self.averages_calls.append((kind, limit))
        return [AGGREGATE]

    def ingest(self, reading: Reading) -> Reading:
        self.ingested.append(reading)
        return reading

    def publish(self, kind: WindowKind) -> PublishResult:
        self.publish_calls.append(kind)
        return self.publish_result

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _install_stub(monkeypatch, stub: StubClient) -> None:
    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)


def test_latest_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["--base-url", "http://example:9000/", "latest"])

    assert result.exit_code == 0
    assert "Latest Reading" in result.stdout
    assert "device_id: device-7" in result.stdout
    assert stub.config.base_url == "http://example:9000"
    assert stub.closed is True


def test_latest_command_without_data(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    stub.latest = None
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["latest"])

    assert result.exit_code == 0
    assert "No sensor data available." in result.stdout


def test_readings_command_maps_lookback(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["readings", "--last", "24hours"])
    rejected = runner.invoke(app, ["readings", "--last", "7days"])

    assert result.exit_code == 0
    assert "Readings (1)" in result.stdout
    assert stub.readings_calls == [WindowKind.daily]
    assert rejected.exit_code != 0


def test_averages_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["--token", "abc", "averages", "--type", "hourly", "--limit", "5"])

    assert result.exit_code == 0
    assert "Aggregates" in result.stdout
    assert "Bad" in result.stdout
    assert stub.averages_calls == [(WindowKind.hourly, 5)]
    assert stub.config.token == "abc"
    assert stub.closed is True


def test_ingest_command_builds_reading(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(
        app,
        [
            "ingest",
            "--device-id",
            "device-9",
            "--temperature",
            "24.5",
            "--humidity",
            "61",
            "--tvoc",
            "210",
            "--timestamp",
            "2024-01-01T10:00:00",
        ],
    )

    assert result.exit_code == 0
    assert "Reading accepted." in result.stdout
    reading = stub.ingested[0]
    assert reading.device_id == "device-9"
    assert reading.humidity == 61.0
    assert reading.timestamp == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_publish_command_success(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["publish", "--type", "daily"])

    assert result.exit_code == 0
    assert "outcome: published" in result.stdout
    assert stub.publish_calls == [WindowKind.daily]


def test_publish_command_failure_exits_non_zero(monkeypatch, runner: CliRunner) -> None:
    failed = PublishResult(
        kind=WindowKind.hourly,
        outcome=PublishOutcome.failed,
        window_end=AGGREGATE.window_end,
        aggregate=AGGREGATE,
        error=TransientStoreError("store offline"),
    )
    stub = StubClient(config=None, publish_result=failed)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["publish"])

    assert result.exit_code == 1
    assert "outcome: failed" in result.stdout
    assert stub.closed is True


def test_publish_command_no_data_is_not_an_error(monkeypatch, runner: CliRunner) -> None:
    skipped = PublishResult(kind=WindowKind.hourly, outcome=PublishOutcome.no_data)
    stub = StubClient(config=None, publish_result=skipped)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["publish"])

    assert result.exit_code == 0
    assert "outcome: no_data" in result.stdout


def test_load_config_prefers_options_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://from-env:8000")
    monkeypatch.setenv("API_TOKEN", "env-token")
    monkeypatch.setenv("CLI_TIMEOUT", "3")

    from_env = load_config()
    explicit = load_config(base_url="https://air.example.com/", token="cli-token", timeout=7.5)

    assert from_env.base_url == "http://from-env:8000"
    assert from_env.token == "env-token"
    assert from_env.timeout == 3.0
    assert explicit.base_url == "https://air.example.com"
    assert explicit.token == "cli-token"
    assert explicit.timeout == 7.5
    assert explicit.realtime_url == "wss://air.example.com/ws"


def test_load_config_falls_back_on_blank_values(monkeypatch) -> None:
    monkeypatch.delenv("API_BASE_URL", raising=False)
    monkeypatch.setenv("API_TOKEN", "   ")
    monkeypatch.setenv("CLI_TIMEOUT", "never")

    config = load_config(base_url="localhost:9000")

    assert config.base_url == "http://localhost:9000"
    assert config.token is None
    assert config.timeout == DEFAULT_TIMEOUT
    assert config.realtime_url == "ws://localhost:9000/ws"
