from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from models.records import Aggregate, Reading, WindowKind


class ReadingStore(Protocol):
    """Durable store for raw readings and the aggregates derived from them.

    ``insert_aggregate`` is a conditional insert: it raises
    ``DuplicateWindowError`` when a record with the same ``(kind, window_end)``
    already exists instead of writing a second one.
    """

    async def put_reading(self, reading: Reading) -> Reading:
        ...

    async def query_readings(self, start: datetime, end: datetime) -> list[Reading]:
        ...

    async def latest_reading(self) -> Optional[Reading]:
        ...

    async def insert_aggregate(self, aggregate: Aggregate) -> Aggregate:
        ...

    async def list_aggregates(
        self, kind: WindowKind, limit: Optional[int] = None
    ) -> list[Aggregate]:
        ...

    async def latest_aggregate(self, kind: WindowKind) -> Optional[Aggregate]:
        ...
