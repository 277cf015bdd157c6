"""Pydantic schemas for the HTTP API and realtime wire format."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models.records import Aggregate, AirQualityStatus, Reading, WindowKind, ensure_utc
from services.realtime import EventKind


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Lookback(str, Enum):
    """Accepted values of the ``last`` query parameter."""

    one_hour = "1hour"
    twenty_four_hours = "24hours"

    @property
    def kind(self) -> WindowKind:
        if self is Lookback.one_hour:
            return WindowKind.hourly
        return WindowKind.daily


class ReadingPayload(_WireModel):
    """One raw sensor sample."""

    device_id: str = Field(..., min_length=1)
    timestamp: datetime
    temperature: float
    humidity: float
    tvoc: float = Field(..., ge=0)

    @field_validator("device_id")
    @classmethod
    def _strip_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("deviceId must be non-empty")
        return device_id

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_record(cls, reading: Reading) -> "ReadingPayload":
        return cls(
            device_id=reading.device_id,
            timestamp=reading.timestamp,
            temperature=reading.temperature,
            humidity=reading.humidity,
            tvoc=reading.tvoc,
        )

    def to_record(self) -> Reading:
        return Reading(
            device_id=self.device_id,
            timestamp=self.timestamp,
            temperature=self.temperature,
            humidity=self.humidity,
            tvoc=self.tvoc,
        )


class AggregatePayload(_WireModel):
    """Persisted summary of one window."""

    kind: WindowKind = Field(..., alias="type")
    window_end: datetime
    avg_temperature: float
    avg_humidity: float
    avg_tvoc: float = Field(..., alias="avgTVOC")
    air_quality_status: AirQualityStatus

    @field_validator("window_end")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_record(cls, aggregate: Aggregate) -> "AggregatePayload":
        return cls(
            kind=aggregate.kind,
            window_end=aggregate.window_end,
            avg_temperature=aggregate.avg_temperature,
            avg_humidity=aggregate.avg_humidity,
            avg_tvoc=aggregate.avg_tvoc,
            air_quality_status=aggregate.air_quality_status,
        )

    def to_record(self) -> Aggregate:
        return Aggregate(
            kind=self.kind,
            window_end=self.window_end,
            avg_temperature=self.avg_temperature,
            avg_humidity=self.avg_humidity,
            avg_tvoc=self.avg_tvoc,
            air_quality_status=self.air_quality_status,
        )


class AggregateCreateRequest(_WireModel):
    """Client-submitted aggregate; ``windowEnd`` defaults to the current window."""

    kind: WindowKind = Field(..., alias="type")
    window_end: Optional[datetime] = None
    avg_temperature: float
    avg_humidity: float
    avg_tvoc: float = Field(..., alias="avgTVOC")
    air_quality_status: AirQualityStatus

    @field_validator("window_end")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def to_record(self, now: datetime) -> Aggregate:
        window_end = self.window_end or self.kind.window_end_for(now)
        return Aggregate(
            kind=self.kind,
            window_end=self.kind.window_end_for(window_end),
            avg_temperature=self.avg_temperature,
            avg_humidity=self.avg_humidity,
            avg_tvoc=self.avg_tvoc,
            air_quality_status=self.air_quality_status,
        )

    @classmethod
    def from_record(cls, aggregate: Aggregate) -> "AggregateCreateRequest":
        return cls(
            kind=aggregate.kind,
            window_end=aggregate.window_end,
            avg_temperature=aggregate.avg_temperature,
            avg_humidity=aggregate.avg_humidity,
            avg_tvoc=aggregate.avg_tvoc,
            air_quality_status=aggregate.air_quality_status,
        )


class AggregateCreateResponse(BaseModel):
    """Envelope returned from ``POST /average``."""

    success: bool
    data: AggregatePayload


def encode_event(kind: EventKind, payload: Any) -> Dict[str, Any]:
    """Build the JSON frame pushed to realtime subscribers."""
    if kind is EventKind.new_reading:
        body = ReadingPayload.from_record(payload)
    else:
        body = AggregatePayload.from_record(payload)
    return {"event": kind.value, "data": body.model_dump(mode="json", by_alias=True)}


def decode_event(message: Dict[str, Any]) -> tuple[EventKind, Any]:
    """Inverse of :func:`encode_event`; raises ``ValueError`` on unknown shapes."""
    if not isinstance(message, dict):
        raise ValueError("Realtime frame must be a JSON object.")
    kind = EventKind(message.get("event"))
    data = message.get("data")
    if kind is EventKind.new_reading:
        return kind, ReadingPayload.model_validate(data).to_record()
    return kind, AggregatePayload.model_validate(data).to_record()
