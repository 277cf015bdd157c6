"""Per-process bookkeeping of when each aggregate kind was last computed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional

from models.records import WindowKind, ensure_utc


@dataclass
class ScheduleState:
    last_computed_at: Optional[datetime] = None
    in_flight: bool = False


class ScheduleTracker:
    """Decides whether a new aggregate of a given kind is due.

    Each publisher instance owns its own tracker. Nothing here is shared
    across processes; duplicate submissions from independent instances are
    resolved by the store's uniqueness check instead.
    """

    def __init__(self, min_intervals: Optional[Mapping[WindowKind, timedelta]] = None) -> None:
        self._min_intervals: Dict[WindowKind, timedelta] = {
            kind: kind.length for kind in WindowKind
        }
        if min_intervals:
            self._min_intervals.update(min_intervals)
        self._states: Dict[WindowKind, ScheduleState] = {
            kind: ScheduleState() for kind in WindowKind
        }

    def min_interval(self, kind: WindowKind) -> timedelta:
        return self._min_intervals[kind]

    def last_computed_at(self, kind: WindowKind) -> Optional[datetime]:
        return self._states[kind].last_computed_at

    def is_due(self, kind: WindowKind, now: datetime) -> bool:
        last = self._states[kind].last_computed_at
        if last is None:
            return True
        return ensure_utc(now) - last >= self._min_intervals[kind]

    def mark_computed(self, kind: WindowKind, now: datetime) -> None:
        self._states[kind].last_computed_at = ensure_utc(now)

    def observe(self, kind: WindowKind, window_end: datetime) -> bool:
        """Advance to a window learned from elsewhere; never moves backwards."""
        state = self._states[kind]
        candidate = ensure_utc(window_end)
        if state.last_computed_at is not None and candidate <= state.last_computed_at:
            return False
        state.last_computed_at = candidate
        return True

    def claim(self, kind: WindowKind, now: datetime) -> bool:
        """Reserve the kind for one attempt; False if not due or already running."""
        state = self._states[kind]
        if state.in_flight or not self.is_due(kind, now):
            return False
        state.in_flight = True
        return True

    def release(self, kind: WindowKind) -> None:
        self._states[kind].in_flight = False

    def in_flight(self, kind: WindowKind) -> bool:
        return self._states[kind].in_flight
