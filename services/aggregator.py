"""Aggregation logic for sensor readings."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from models.records import Aggregate, AirQualityStatus, Reading, WindowKind, ensure_utc
from services.errors import NoDataError

BAD_TEMPERATURE_ABOVE = 30.0
FAIR_HUMIDITY_ABOVE = 60.0


def classify(avg_temperature: float, avg_humidity: float, avg_tvoc: float) -> AirQualityStatus:
    """Derive the overall air quality from averaged metrics.

    Checks run in order and the first match wins: temperature above 30 is
    ``Bad``, otherwise humidity above 60 is ``Fair``, otherwise ``Good``.
    ``avg_tvoc`` is accepted but does not take part in the decision.
    """
    if avg_temperature > BAD_TEMPERATURE_ABOVE:
        return AirQualityStatus.bad
    if avg_humidity > FAIR_HUMIDITY_ABOVE:
        return AirQualityStatus.fair
    return AirQualityStatus.good


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def compute_aggregate(
        self,
        kind: WindowKind,
        readings: Sequence[Reading],
        window_end: datetime,
    ) -> Aggregate:
        """Average ``readings`` for the window of ``kind`` ending at ``window_end``.

        The caller is responsible for passing only readings that fall inside
        ``[window_end - kind.length, window_end)``. An empty sequence raises
        :class:`NoDataError` rather than producing a zero-valued record.
        """
        count = len(readings)
        if count == 0:
            raise NoDataError(kind)

        total_temperature = 0.0
        total_humidity = 0.0
        total_tvoc = 0.0
        for reading in readings:
            total_temperature += reading.temperature
            total_humidity += reading.humidity
            total_tvoc += reading.tvoc

        avg_temperature = total_temperature / count
        avg_humidity = total_humidity / count
        avg_tvoc = total_tvoc / count

        return Aggregate(
            kind=kind,
            window_end=ensure_utc(window_end),
            avg_temperature=avg_temperature,
            avg_humidity=avg_humidity,
            avg_tvoc=avg_tvoc,
            air_quality_status=classify(avg_temperature, avg_humidity, avg_tvoc),
        )
