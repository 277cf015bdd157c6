from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from cli.config import CLIConfig
from datastore.http_store import HttpReadingStore
from models.records import Aggregate, Reading, WindowKind, utcnow
from services.aggregator import Aggregator
from services.client_cache import ClientCache
from services.errors import AirQualityError, AuthorizationError
from services.publisher import AggregatePublisher, PublishResult, ScheduleRunner
from services.realtime import EventKind, RealtimeEvent
from services.realtime_client import RealtimeListener
from services.schedule import ScheduleTracker

T = TypeVar("T")


class ApiClient:
    """Blocking facade over :class:`HttpReadingStore` for CLI commands."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._runner = asyncio.Runner()
        self._store: Optional[HttpReadingStore] = None

    def close(self) -> None:
        if self._store is not None:
            self._runner.run(self._store.aclose())
            self._store = None
        self._runner.close()

    def latest_reading(self) -> Optional[Reading]:
        return self._run(lambda store: store.latest_reading())

    def readings(self, kind: WindowKind, now: Optional[datetime] = None) -> list[Reading]:
        end = now or utcnow()
        return self._run(lambda store: store.query_readings(end - kind.length, end))

    def averages(self, kind: WindowKind, limit: Optional[int] = None) -> list[Aggregate]:
        return self._run(lambda store: store.list_aggregates(kind, limit=limit))

    def ingest(self, reading: Reading) -> Reading:
        return self._run(lambda store: store.put_reading(reading))

    def publish(self, kind: WindowKind) -> PublishResult:
        """Compute the current window locally and submit it to the service."""

        def action(store: HttpReadingStore) -> Awaitable[PublishResult]:
            publisher = AggregatePublisher(
                store=store,
                aggregator=Aggregator(),
                tracker=ScheduleTracker(),
                timeout=self._config.timeout,
            )
            return publisher.publish_if_due(kind)

        return self._run(action)

    def watch(
        self,
        on_event: Callable[[RealtimeEvent], None],
        publish: bool = False,
        tick_seconds: float = 60.0,
    ) -> None:
        """Stream realtime events until interrupted, resyncing on every reconnect."""
        self._run(lambda store: self._watch(store, on_event, publish, tick_seconds))

    async def _watch(
        self,
        store: HttpReadingStore,
        on_event: Callable[[RealtimeEvent], None],
        publish: bool,
        tick_seconds: float,
    ) -> None:
        cache = ClientCache()
        listener = RealtimeListener(self._config.realtime_url, token=self._config.token)
        listener.on_connect(lambda: cache.refresh(store))
        kinds = (EventKind.new_reading, EventKind.new_aggregate)

        runner: Optional[ScheduleRunner] = None
        if publish:
            publisher = AggregatePublisher(
                store=store,
                aggregator=Aggregator(),
                tracker=cache.tracker,
                timeout=self._config.timeout,
            )

            def settle(result: PublishResult) -> None:
                if result.aggregate is None:
                    return
                if result.succeeded:
                    cache.on_new_aggregate(result.aggregate)
                else:
                    cache.apply_local(result.aggregate)

            runner = ScheduleRunner(publisher, tick_seconds=tick_seconds, on_result=settle)

        with cache.attach(listener.channel), listener.channel.subscribe(kinds, on_event):
            tasks = [asyncio.ensure_future(listener.run())]
            if runner is not None:
                tasks.append(runner.start())
            try:
                await asyncio.gather(*tasks)
            finally:
                listener.stop()
                if runner is not None:
                    await runner.stop()
                for task in tasks:
                    task.cancel()

    def _run(self, action: Callable[[HttpReadingStore], Awaitable[T]]) -> T:
        try:
            return self._runner.run(self._with_store(action))
        except AuthorizationError as exc:
            typer.secho(f"Not authorized: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        except AirQualityError as exc:
            typer.secho(f"Request failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    async def _with_store(self, action: Callable[[HttpReadingStore], Awaitable[T]]) -> T:
        if self._store is None:
            self._store = HttpReadingStore(
                self._config.base_url,
                token=self._config.token,
                timeout=self._config.timeout,
            )
        return await action(self._store)
