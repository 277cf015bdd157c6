"""Exception hierarchy for the aggregation and sync services."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from models.records import Aggregate, WindowKind


class AirQualityError(Exception):
    """Base exception for all aggregation and sync errors."""


class NoDataError(AirQualityError):
    """The requested window contains no readings."""

    def __init__(self, kind: "WindowKind", message: str | None = None) -> None:
        self.kind = kind
        super().__init__(message or f"No readings available for {kind.value} window.")


class WindowNotClosedError(AirQualityError):
    """An aggregate was submitted for a window that has not ended yet."""

    def __init__(self, aggregate: "Aggregate", current_end: datetime) -> None:
        self.aggregate = aggregate
        self.current_end = current_end
        super().__init__(
            f"{aggregate.kind.value} window ending {aggregate.window_end.isoformat()} "
            f"has not closed yet; latest closed window ends {current_end.isoformat()}."
        )


class StoreError(AirQualityError):
    """Failure talking to the reading store or persistence layer."""


class TransientStoreError(StoreError):
    """Store unreachable or temporarily failing; safe to retry later."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DuplicateWindowError(StoreError):
    """An aggregate for the same (kind, window_end) already exists."""

    def __init__(self, existing: "Aggregate", message: Optional[str] = None) -> None:
        self.existing = existing
        super().__init__(
            message
            or f"Aggregate for {existing.kind.value} window ending "
            f"{existing.window_end.isoformat()} already exists."
        )


class AuthorizationError(AirQualityError):
    """Missing or rejected bearer credential."""


class MalformedResponseError(StoreError):
    """The store or network returned data of an unexpected shape."""
