from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

import typer

from models.records import Aggregate, AirQualityStatus, Reading
from services.publisher import PublishResult
from services.realtime import EventKind, RealtimeEvent

_STATUS_COLORS = {
    AirQualityStatus.good: typer.colors.GREEN,
    AirQualityStatus.fair: typer.colors.YELLOW,
    AirQualityStatus.bad: typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_reading(reading: Optional[Reading]) -> None:
    echo_heading("Latest Reading")
    if reading is None:
        typer.echo("No sensor data available.")
        return
    echo_key_values(
        [
            ("device_id", reading.device_id),
            ("timestamp", reading.timestamp.isoformat()),
            ("temperature", reading.temperature),
            ("humidity", reading.humidity),
            ("tvoc", reading.tvoc),
        ]
    )


def render_readings(readings: Sequence[Reading]) -> None:
    echo_heading(f"Readings ({len(readings)})")
    if not readings:
        typer.echo("No readings in range.")
        return
    for reading in readings:
        typer.echo(
            f"  - {reading.timestamp.isoformat()} {reading.device_id}: "
            f"T={reading.temperature:.2f} H={reading.humidity:.2f} TVOC={reading.tvoc:.0f}"
        )


def _aggregate_line(aggregate: Aggregate) -> str:
    return (
        f"{aggregate.kind.value} {aggregate.window_end.isoformat()}: "
        f"T={aggregate.avg_temperature:.2f} H={aggregate.avg_humidity:.2f} "
        f"TVOC={aggregate.avg_tvoc:.1f}"
    )


def echo_aggregate(aggregate: Aggregate) -> None:
    status = aggregate.air_quality_status
    typer.echo(f"  - {_aggregate_line(aggregate)} ", nl=False)
    typer.secho(status.value, fg=_STATUS_COLORS[status])


def render_aggregates(aggregates: Sequence[Aggregate]) -> None:
    echo_heading("Aggregates")
    if not aggregates:
        typer.echo("No aggregates available.")
        return
    for aggregate in aggregates:
        echo_aggregate(aggregate)


def render_publish_result(result: PublishResult) -> None:
    echo_heading("Publish Result")
    echo_key_values(
        [
            ("type", result.kind.value),
            ("outcome", result.outcome.value),
            ("window_end", result.window_end.isoformat() if result.window_end else None),
        ]
    )
    if result.aggregate is not None:
        echo_aggregate(result.aggregate)
    if result.error is not None:
        typer.secho(f"error: {result.error}", fg=typer.colors.RED, err=True)


def render_event(event: RealtimeEvent) -> None:
    if event.kind is EventKind.new_reading:
        reading: Reading = event.payload
        typer.echo(
            f"[{event.kind.value}] {reading.device_id} {reading.timestamp.isoformat()} "
            f"T={reading.temperature:.2f} H={reading.humidity:.2f} TVOC={reading.tvoc:.0f}"
        )
        return
    typer.echo(f"[{event.kind.value}] ", nl=False)
    echo_aggregate(event.payload)
