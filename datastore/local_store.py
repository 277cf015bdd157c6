from __future__ import annotations

import bisect
import json
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.schemas import AggregatePayload, ReadingPayload
from models.records import Aggregate, Reading, WindowKind, ensure_utc
from services.errors import DuplicateWindowError

logger = logging.getLogger(__name__)


def _reading_sort_key(reading: Reading) -> Tuple[datetime, str]:
    return reading.timestamp, reading.device_id


class LocalReadingStore:
    """In-memory reading/aggregate store with optional JSON file persistence.

    Readings are append-only and kept in timestamp order. Aggregates are keyed
    by ``(kind, window_end)``; the check-and-insert happens under the store
    lock so concurrent publishers cannot both create the same window.
    """

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self.persistence_path = persistence_path
        self._readings: List[Reading] = []
        self._reading_keys: Dict[Tuple[str, datetime], Reading] = {}
        self._aggregates: Dict[Tuple[WindowKind, datetime], Aggregate] = {}
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    async def put_reading(self, reading: Reading) -> Reading:
        stored, _ = await self.add_reading(reading)
        return stored

    async def add_reading(self, reading: Reading) -> Tuple[Reading, bool]:
        """Append ``reading``; a repeat of the same (device, timestamp) is a no-op.

        Returns the stored reading and whether it was newly written.
        """
        reading = self._normalise_reading(reading)
        with self._lock:
            key = (reading.device_id, reading.timestamp)
            existing = self._reading_keys.get(key)
            if existing is not None:
                return existing, False
            self._insert_reading(reading)
            try:
                self._persist()
            except OSError:
                self._remove_reading(reading)
                raise
        return reading, True

    async def query_readings(self, start: datetime, end: datetime) -> list[Reading]:
        """Readings with ``start <= timestamp < end`` in timestamp order."""
        start = ensure_utc(start)
        end = ensure_utc(end)
        with self._lock:
            lo = bisect.bisect_left(self._readings, start, key=lambda r: r.timestamp)
            hi = bisect.bisect_left(self._readings, end, key=lambda r: r.timestamp)
            return self._readings[lo:hi]

    async def latest_reading(self) -> Optional[Reading]:
        with self._lock:
            if not self._readings:
                return None
            return self._readings[-1]

    async def insert_aggregate(self, aggregate: Aggregate) -> Aggregate:
        with self._lock:
            existing = self._aggregates.get(aggregate.key)
            if existing is not None:
                raise DuplicateWindowError(existing)
            self._aggregates[aggregate.key] = aggregate
            try:
                self._persist()
            except OSError:
                del self._aggregates[aggregate.key]
                raise
        return aggregate

    async def list_aggregates(
        self, kind: WindowKind, limit: Optional[int] = None
    ) -> list[Aggregate]:
        with self._lock:
            items = sorted(
                (item for item in self._aggregates.values() if item.kind is kind),
                key=lambda item: item.window_end,
            )
        if limit is not None:
            return items[-limit:] if limit > 0 else []
        return items

    async def latest_aggregate(self, kind: WindowKind) -> Optional[Aggregate]:
        items = await self.list_aggregates(kind, limit=1)
        return items[0] if items else None

    @staticmethod
    def _normalise_reading(reading: Reading) -> Reading:
        return replace(reading, timestamp=ensure_utc(reading.timestamp))

    def _insert_reading(self, reading: Reading) -> None:
        bisect.insort_right(self._readings, reading, key=_reading_sort_key)
        self._reading_keys[(reading.device_id, reading.timestamp)] = reading

    def _remove_reading(self, reading: Reading) -> None:
        self._readings.remove(reading)
        del self._reading_keys[(reading.device_id, reading.timestamp)]

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            "readings": [
                ReadingPayload.from_record(item).model_dump(mode="json", by_alias=True)
                for item in self._readings
            ],
            "aggregates": [
                AggregatePayload.from_record(item).model_dump(mode="json", by_alias=True)
                for item in sorted(
                    self._aggregates.values(),
                    key=lambda item: (item.kind.value, item.window_end),
                )
            ],
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable store file: %s", exc)
            data = {}

        try:
            readings = [ReadingPayload.model_validate(item).to_record() for item in data.get("readings", [])]
            aggregates = [
                AggregatePayload.model_validate(item).to_record()
                for item in data.get("aggregates", [])
            ]
        except ValidationError as exc:
            logger.warning("Ignoring malformed store file: %s", exc)
            return

        for reading in readings:
            if (reading.device_id, reading.timestamp) not in self._reading_keys:
                self._insert_reading(reading)
        for aggregate in aggregates:
            self._aggregates.setdefault(aggregate.key, aggregate)
