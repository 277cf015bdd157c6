"""Wiring of the server-side store, channel, publisher and scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from datastore.local_store import LocalReadingStore
from models.records import WindowKind
from services.aggregator import Aggregator
from services.errors import StoreError
from services.publisher import AggregatePublisher, ScheduleRunner
from services.realtime import RealtimeChannel
from services.schedule import ScheduleTracker
from settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceRuntime:
    """Everything one server process owns. Built once, passed explicitly."""

    settings: Settings
    store: LocalReadingStore
    channel: RealtimeChannel
    tracker: ScheduleTracker
    publisher: AggregatePublisher
    runner: ScheduleRunner

    async def start(self) -> None:
        try:
            await self.publisher.prime()
        except StoreError as exc:
            logger.warning("Could not prime schedule from store", extra={"reason": str(exc)})
        if self.settings.scheduler_enabled:
            self.runner.start()

    async def stop(self) -> None:
        await self.runner.stop()
        await self.channel.close()


def build_tracker(settings: Settings) -> ScheduleTracker:
    return ScheduleTracker(
        min_intervals={
            WindowKind.hourly: timedelta(seconds=settings.hourly_min_interval_seconds),
            WindowKind.daily: timedelta(seconds=settings.daily_min_interval_seconds),
        }
    )


def build_runtime(settings: Settings) -> ServiceRuntime:
    """Factory that wires the runtime from settings."""
    persistence = Path(settings.store_path) if settings.store_path else None
    store = LocalReadingStore(persistence_path=persistence)
    channel = RealtimeChannel(queue_size=settings.subscriber_queue_size)
    tracker = build_tracker(settings)
    publisher = AggregatePublisher(
        store=store,
        aggregator=Aggregator(),
        tracker=tracker,
        channel=channel,
        timeout=settings.store_timeout_seconds,
    )
    runner = ScheduleRunner(publisher, tick_seconds=settings.schedule_tick_seconds)
    return ServiceRuntime(
        settings=settings,
        store=store,
        channel=channel,
        tracker=tracker,
        publisher=publisher,
        runner=runner,
    )
