from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import DEFAULT_TICK_SECONDS, CLIConfig, load_config
from cli.render import (
    render_aggregates,
    render_event,
    render_publish_result,
    render_reading,
    render_readings,
)
from models.records import Reading, WindowKind, ensure_utc, utcnow


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the air quality aggregation service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)

_LOOKBACKS = {"1hour": WindowKind.hourly, "24hours": WindowKind.daily}


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        help="Bearer token (defaults to API_TOKEN env).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds before a request is treated as failed.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, token=token, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the most recent reading."""
    state = _get_state(ctx)
    render_reading(state.client.latest_reading())


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    last: str = typer.Option("1hour", "--last", help="Lookback: 1hour or 24hours."),
) -> None:
    """List readings inside the trailing lookback."""
    kind = _LOOKBACKS.get(last)
    if kind is None:
        raise typer.BadParameter("Expected 1hour or 24hours.", param_hint="--last")
    state = _get_state(ctx)
    render_readings(state.client.readings(kind))


@app.command("averages")
def averages_command(
    ctx: typer.Context,
    kind: WindowKind = typer.Option(WindowKind.hourly, "--type", "-t", help="Aggregate window kind."),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Only the most recent N."),
) -> None:
    """List persisted aggregates."""
    state = _get_state(ctx)
    render_aggregates(state.client.averages(kind, limit=limit))


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    device_id: str = typer.Option(..., "--device-id", "-d", help="Reporting device identifier."),
    temperature: float = typer.Option(..., "--temperature", help="Degrees Celsius."),
    humidity: float = typer.Option(..., "--humidity", help="Relative humidity in percent."),
    tvoc: float = typer.Option(..., "--tvoc", help="TVOC in ppb."),
    timestamp: Optional[datetime] = typer.Option(
        None, "--timestamp", help="Sample time (defaults to now, UTC)."
    ),
) -> None:
    """Submit one reading as a device would."""
    state = _get_state(ctx)
    reading = Reading(
        device_id=device_id,
        timestamp=ensure_utc(timestamp) if timestamp else utcnow(),
        temperature=temperature,
        humidity=humidity,
        tvoc=tvoc,
    )
    stored = state.client.ingest(reading)
    typer.secho("Reading accepted.", fg=typer.colors.GREEN)
    render_reading(stored)


@app.command("publish")
def publish_command(
    ctx: typer.Context,
    kind: WindowKind = typer.Option(WindowKind.hourly, "--type", "-t", help="Aggregate window kind."),
) -> None:
    """Compute the most recent complete window locally and submit it."""
    state = _get_state(ctx)
    result = state.client.publish(kind)
    render_publish_result(result)
    if not result.succeeded and result.error is not None:
        raise typer.Exit(code=1)


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    publish: bool = typer.Option(
        False,
        "--publish/--no-publish",
        help="Also run a local scheduling loop that submits due aggregates.",
    ),
    tick_seconds: float = typer.Option(
        DEFAULT_TICK_SECONDS, "--tick", help="Seconds between local scheduling passes."
    ),
) -> None:
    """Stream realtime events, resynchronizing on every reconnect."""
    state = _get_state(ctx)
    typer.echo(f"Watching {state.config.base_url} (Ctrl+C to stop) ...")
    try:
        state.client.watch(render_event, publish=publish, tick_seconds=tick_seconds)
    except KeyboardInterrupt:
        typer.echo("Stopped.")
