"""HTTP route definitions for the service."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status

from app.schemas import (
    AggregateCreateRequest,
    AggregateCreateResponse,
    AggregatePayload,
    Lookback,
    ReadingPayload,
)
from models.records import WindowKind, ensure_utc, utcnow
from services.errors import StoreError, WindowNotClosedError
from services.realtime import EventKind
from services.runtime import ServiceRuntime


def get_runtime(request: Request) -> ServiceRuntime:
    return request.app.state.runtime


def token_matches(expected: Optional[str], authorization: Optional[str]) -> bool:
    if not expected:
        return True
    if not authorization:
        return False
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return False
    return secrets.compare_digest(credential.strip(), expected)


def require_token(
    runtime: ServiceRuntime = Depends(get_runtime),
    authorization: Optional[str] = Header(default=None),
) -> None:
    if not token_matches(runtime.settings.api_token, authorization):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


router = APIRouter()
data_router = APIRouter(dependencies=[Depends(require_token)])


@data_router.get(
    "/sensordata",
    response_model=list[ReadingPayload],
    summary="Readings inside a trailing lookback or an explicit [start, end) range.",
)
async def list_readings(
    last: Optional[Lookback] = Query(default=None, description="Trailing window: 1hour or 24hours."),
    start: Optional[datetime] = Query(default=None, description="Inclusive range start."),
    end: Optional[datetime] = Query(default=None, description="Exclusive range end."),
    runtime: ServiceRuntime = Depends(get_runtime),
) -> list[ReadingPayload]:
    now = utcnow()
    if start is not None:
        range_start = ensure_utc(start)
        range_end = ensure_utc(end) if end is not None else now
    elif last is not None:
        range_end = ensure_utc(end) if end is not None else now
        range_start = range_end - last.kind.length
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide either 'last' or a 'start' (and optional 'end') range.",
        )

    if range_end <= range_start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Range end must be after range start.",
        )

    readings = await runtime.store.query_readings(range_start, range_end)
    return [ReadingPayload.from_record(item) for item in readings]


@data_router.get(
    "/sensordata/latest",
    response_model=ReadingPayload,
    summary="Most recent reading from any device.",
)
async def latest_reading(runtime: ServiceRuntime = Depends(get_runtime)) -> ReadingPayload:
    reading = await runtime.store.latest_reading()
    if reading is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No sensor data available.",
        )
    return ReadingPayload.from_record(reading)


@data_router.post(
    "/sensordata",
    response_model=ReadingPayload,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest one device reading and push it to realtime subscribers.",
)
async def ingest_reading(
    payload: ReadingPayload,
    response: Response,
    runtime: ServiceRuntime = Depends(get_runtime),
) -> ReadingPayload:
    stored, created = await runtime.store.add_reading(payload.to_record())
    if created:
        runtime.channel.broadcast(EventKind.new_reading, stored)
    else:
        response.status_code = status.HTTP_200_OK
    return ReadingPayload.from_record(stored)


@data_router.get(
    "/average",
    response_model=list[AggregatePayload],
    summary="Persisted aggregates of one kind, oldest first.",
)
async def list_averages(
    kind: WindowKind = Query(default=WindowKind.hourly, alias="type"),
    limit: Optional[int] = Query(default=None, ge=1, description="Only the most recent N."),
    runtime: ServiceRuntime = Depends(get_runtime),
) -> list[AggregatePayload]:
    items = await runtime.store.list_aggregates(kind, limit=limit)
    return [AggregatePayload.from_record(item) for item in items]


@data_router.post(
    "/average",
    response_model=AggregateCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a client-computed aggregate; duplicates of a window return 409.",
)
async def create_average(
    payload: AggregateCreateRequest,
    response: Response,
    runtime: ServiceRuntime = Depends(get_runtime),
) -> AggregateCreateResponse:
    now = utcnow()
    try:
        stored, created = await runtime.publisher.accept(payload.to_record(now), now)
    except WindowNotClosedError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    if not created:
        response.status_code = status.HTTP_409_CONFLICT
    return AggregateCreateResponse(success=created, data=AggregatePayload.from_record(stored))


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(runtime: ServiceRuntime = Depends(get_runtime)) -> dict[str, object]:
    return {
        "status": "ok",
        "scheduler": "running" if runtime.runner.running else "stopped",
        "subscribers": runtime.channel.subscriber_count(),
    }


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}


router.include_router(data_router)
