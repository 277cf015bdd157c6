"""Scheduled computation, persistence and fan-out of window aggregates."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

from datastore.base import ReadingStore
from models.records import Aggregate, WindowKind, utcnow
from services.aggregator import Aggregator, classify
from services.errors import (
    AuthorizationError,
    DuplicateWindowError,
    MalformedResponseError,
    NoDataError,
    TransientStoreError,
    WindowNotClosedError,
)
from services.realtime import EventKind, RealtimeChannel
from services.schedule import ScheduleTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PublishOutcome(str, Enum):
    not_due = "not_due"
    in_progress = "in_progress"
    no_data = "no_data"
    published = "published"
    duplicate = "duplicate"
    failed = "failed"


@dataclass
class PublishResult:
    kind: WindowKind
    outcome: PublishOutcome
    window_end: Optional[datetime] = None
    aggregate: Optional[Aggregate] = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (PublishOutcome.published, PublishOutcome.duplicate)


class AggregatePublisher:
    """Turns due windows into persisted, broadcast aggregates.

    This is the only writer of aggregates. When ``channel`` is ``None`` the
    store is expected to fan out on its own (a remote service broadcasts after
    accepting ``POST /average``).
    """

    def __init__(
        self,
        store: ReadingStore,
        aggregator: Aggregator,
        tracker: ScheduleTracker,
        channel: Optional[RealtimeChannel] = None,
        timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.aggregator = aggregator
        self.tracker = tracker
        self.channel = channel
        self.timeout = timeout

    async def prime(self, kinds: Iterable[WindowKind] = tuple(WindowKind)) -> None:
        """Seed the tracker from the newest persisted aggregate of each kind."""
        for kind in kinds:
            latest = await self._call(self.store.latest_aggregate(kind))
            if latest is not None:
                self.tracker.observe(kind, latest.window_end)

    async def publish_if_due(
        self, kind: WindowKind, now: Optional[datetime] = None
    ) -> PublishResult:
        now = now or utcnow()
        if self.tracker.in_flight(kind):
            return PublishResult(kind=kind, outcome=PublishOutcome.in_progress)
        if not self.tracker.claim(kind, now):
            return PublishResult(kind=kind, outcome=PublishOutcome.not_due)

        window_end = kind.window_end_for(now)
        context = {"window_kind": kind, "window_end": window_end}
        aggregate: Optional[Aggregate] = None
        try:
            start, end = kind.window_bounds(window_end)
            try:
                readings = await self._call(self.store.query_readings(start, end))
                aggregate = self.aggregator.compute_aggregate(kind, readings, window_end)
            except NoDataError:
                logger.info("No readings in window; skipping", extra=context)
                return PublishResult(kind=kind, outcome=PublishOutcome.no_data, window_end=window_end)

            context["reading_count"] = len(readings)
            stored, created = await self._persist(aggregate)
        except TransientStoreError as exc:
            logger.warning(
                "Aggregate publish failed; will retry",
                extra={**context, "reason": str(exc)},
            )
            return PublishResult(
                kind=kind,
                outcome=PublishOutcome.failed,
                window_end=window_end,
                aggregate=aggregate,
                error=exc,
            )
        except (AuthorizationError, MalformedResponseError) as exc:
            logger.error("Aggregate publish rejected", extra={**context, "reason": str(exc)})
            raise
        finally:
            self.tracker.release(kind)

        self.tracker.mark_computed(kind, stored.window_end)
        outcome = PublishOutcome.published if created else PublishOutcome.duplicate
        logger.info("Aggregate window settled", extra={**context, "outcome": outcome})
        return PublishResult(kind=kind, outcome=outcome, window_end=window_end, aggregate=stored)

    async def accept(
        self, aggregate: Aggregate, now: Optional[datetime] = None
    ) -> tuple[Aggregate, bool]:
        """Persist an externally computed aggregate.

        Only windows that have already closed are accepted, and the status is
        re-derived from the submitted averages. Returns the stored record and
        whether this call created it.
        """
        current_end = aggregate.kind.window_end_for(now or utcnow())
        if aggregate.window_end > current_end:
            raise WindowNotClosedError(aggregate, current_end)
        aggregate = replace(
            aggregate,
            air_quality_status=classify(
                aggregate.avg_temperature, aggregate.avg_humidity, aggregate.avg_tvoc
            ),
        )
        stored, created = await self._persist(aggregate)
        self.tracker.observe(stored.kind, stored.window_end)
        return stored, created

    async def _persist(self, aggregate: Aggregate) -> tuple[Aggregate, bool]:
        try:
            stored = await self._call(self.store.insert_aggregate(aggregate))
        except DuplicateWindowError as exc:
            logger.info(
                "Window already published by another instance",
                extra={"window_kind": aggregate.kind, "window_end": aggregate.window_end},
            )
            return exc.existing, False
        if self.channel is not None:
            self.channel.broadcast(EventKind.new_aggregate, stored)
        return stored, True

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransientStoreError(f"Store call timed out after {self.timeout}s.") from exc
        except (ConnectionError, OSError) as exc:
            raise TransientStoreError(f"Store unavailable: {exc}") from exc


ResultCallback = Callable[[PublishResult], None]


class ScheduleRunner:
    """Background loop that asks the publisher to settle due windows every tick."""

    def __init__(
        self,
        publisher: AggregatePublisher,
        kinds: Sequence[WindowKind] = tuple(WindowKind),
        tick_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        self.publisher = publisher
        self.kinds = tuple(kinds)
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.on_result = on_result
        self._task: Optional[asyncio.Task[None]] = None

    async def run_once(self, now: Optional[datetime] = None) -> list[PublishResult]:
        now = now or self.clock()
        results: list[PublishResult] = []
        for kind in self.kinds:
            result = await self.publisher.publish_if_due(kind, now)
            if self.on_result is not None:
                self.on_result(result)
            results.append(result)
        return results

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_once()
            except AuthorizationError:
                logger.error("Scheduling stopped: store rejected credentials")
                raise
            except MalformedResponseError as exc:
                logger.error("Scheduling pass aborted", extra={"reason": str(exc)})
            await asyncio.sleep(self.tick_seconds)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except AuthorizationError:
            pass

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
