"""Client-side mirror of the latest reading and aggregates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional, Set, Tuple

from datastore.base import ReadingStore
from models.records import Aggregate, Reading, WindowKind
from services.errors import AirQualityError
from services.realtime import EventKind, RealtimeChannel, RealtimeEvent, Subscription
from services.schedule import ScheduleTracker

logger = logging.getLogger(__name__)

WindowKey = Tuple[WindowKind, datetime]


class CacheStatus(str, Enum):
    idle = "idle"
    loading = "loading"
    ready = "ready"
    error = "error"


@dataclass(frozen=True)
class CacheView:
    """What a UI layer renders: status plus the current data, if any."""

    status: CacheStatus
    latest_reading: Optional[Reading]
    latest_aggregates: Dict[WindowKind, Aggregate] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.latest_reading is not None or bool(self.latest_aggregates)


class ClientCache:
    """Holds what a client knows and reconciles it with server events.

    Aggregates arriving from the server are authoritative for their
    ``(kind, window_end)`` and also advance the local schedule tracker, so a
    client that runs its own publisher does not resubmit windows somebody
    else already settled. Merges are idempotent.
    """

    def __init__(self, tracker: Optional[ScheduleTracker] = None) -> None:
        self.tracker = tracker or ScheduleTracker()
        self.latest_reading: Optional[Reading] = None
        self.latest_aggregates: Dict[WindowKind, Aggregate] = {}
        self.status = CacheStatus.idle
        self.error: Optional[str] = None
        self._aggregates: Dict[WindowKey, Aggregate] = {}
        self._speculative: Set[WindowKey] = set()

    def on_new_reading(self, reading: Reading) -> bool:
        current = self.latest_reading
        if current is not None and reading.timestamp < current.timestamp:
            return False
        if current == reading:
            return False
        self.latest_reading = reading
        return True

    def on_new_aggregate(self, aggregate: Aggregate) -> bool:
        """Apply a server-confirmed aggregate; returns False if nothing changed."""
        key = aggregate.key
        self.tracker.observe(aggregate.kind, aggregate.window_end)
        if self._aggregates.get(key) == aggregate and key not in self._speculative:
            return False
        self._speculative.discard(key)
        self._store(aggregate)
        return True

    def apply_local(self, aggregate: Aggregate) -> bool:
        """Record a locally computed aggregate unless the server already confirmed one."""
        key = aggregate.key
        if key in self._aggregates and key not in self._speculative:
            return False
        self._speculative.add(key)
        self._store(aggregate)
        return True

    def is_confirmed(self, kind: WindowKind, window_end: datetime) -> bool:
        key = (kind, window_end)
        return key in self._aggregates and key not in self._speculative

    def aggregates(self, kind: WindowKind) -> list[Aggregate]:
        return sorted(
            (item for key, item in self._aggregates.items() if key[0] is kind),
            key=lambda item: item.window_end,
        )

    def handle_event(self, event: RealtimeEvent) -> None:
        if event.kind is EventKind.new_reading:
            self.on_new_reading(event.payload)
        elif event.kind is EventKind.new_aggregate:
            self.on_new_aggregate(event.payload)

    def attach(self, channel: RealtimeChannel) -> Subscription:
        return channel.subscribe(
            (EventKind.new_reading, EventKind.new_aggregate), self.handle_event
        )

    async def refresh(
        self,
        source: ReadingStore,
        kinds: Iterable[WindowKind] = tuple(WindowKind),
    ) -> bool:
        """Pull current state from ``source``; must run on every (re)connect."""
        self.status = CacheStatus.loading
        try:
            reading = await source.latest_reading()
            pulled = [(kind, await source.list_aggregates(kind)) for kind in kinds]
        except AirQualityError as exc:
            self.status = CacheStatus.error
            self.error = str(exc)
            logger.warning("Cache refresh failed", extra={"reason": str(exc)})
            return False

        if reading is not None:
            self.on_new_reading(reading)
        for _, items in pulled:
            for item in items:
                self.on_new_aggregate(item)
        self.status = CacheStatus.ready
        self.error = None
        return True

    def view(self) -> CacheView:
        return CacheView(
            status=self.status,
            latest_reading=self.latest_reading,
            latest_aggregates=dict(self.latest_aggregates),
            error=self.error,
        )

    def _store(self, aggregate: Aggregate) -> None:
        self._aggregates[aggregate.key] = aggregate
        current = self.latest_aggregates.get(aggregate.kind)
        if current is None or aggregate.window_end >= current.window_end:
            self.latest_aggregates[aggregate.kind] = aggregate
