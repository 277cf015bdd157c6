"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WindowKind(str, Enum):
    """Aggregation window kinds and their lengths."""

    hourly = "hourly"
    daily = "daily"

    @property
    def length(self) -> timedelta:
        if self is WindowKind.hourly:
            return timedelta(hours=1)
        return timedelta(hours=24)

    @property
    def lookback(self) -> str:
        """Value of the ``last`` query parameter covering one window."""
        if self is WindowKind.hourly:
            return "1hour"
        return "24hours"

    def window_end_for(self, now: datetime) -> datetime:
        """Most recent window boundary at or before ``now`` (UTC)."""
        aligned = ensure_utc(now).replace(minute=0, second=0, microsecond=0)
        if self is WindowKind.daily:
            aligned = aligned.replace(hour=0)
        return aligned

    def window_bounds(self, window_end: datetime) -> tuple[datetime, datetime]:
        end = ensure_utc(window_end)
        return end - self.length, end


class AirQualityStatus(str, Enum):
    good = "Good"
    fair = "Fair"
    bad = "Bad"


@dataclass(frozen=True, slots=True)
class Reading:
    """A single raw sample reported by a field device."""

    device_id: str
    timestamp: datetime
    temperature: float
    humidity: float
    tvoc: float


@dataclass(frozen=True, slots=True)
class Aggregate:
    """Summary of all readings inside one window."""

    kind: WindowKind
    window_end: datetime
    avg_temperature: float
    avg_humidity: float
    avg_tvoc: float
    air_quality_status: AirQualityStatus

    @property
    def key(self) -> tuple[WindowKind, datetime]:
        return self.kind, self.window_end
