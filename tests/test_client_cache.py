from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from datastore.local_store import LocalReadingStore
from models.records import Aggregate, AirQualityStatus, Reading, WindowKind
from services.client_cache import CacheStatus, ClientCache
from services.errors import TransientStoreError
from services.realtime import EventKind, RealtimeChannel, RealtimeEvent

WINDOW_END = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def _aggregate(window_end: datetime = WINDOW_END, temperature: float = 22.0) -> Aggregate:
    return Aggregate(
        kind=WindowKind.hourly,
        window_end=window_end,
        avg_temperature=temperature,
        avg_humidity=48.0,
        avg_tvoc=150.0,
        air_quality_status=AirQualityStatus.good,
    )


def _reading(minute: int) -> Reading:
    return Reading(
        device_id="device-1",
        timestamp=WINDOW_END + timedelta(minutes=minute),
        temperature=21.0,
        humidity=47.0,
        tvoc=90.0,
    )


def _snapshot(cache: ClientCache) -> tuple:
    return (
        cache.latest_reading,
        dict(cache.latest_aggregates),
        cache.aggregates(WindowKind.hourly),
        cache.tracker.last_computed_at(WindowKind.hourly),
    )


def test_same_aggregate_event_twice_is_idempotent() -> None:
    cache = ClientCache()
    event = RealtimeEvent(kind=EventKind.new_aggregate, payload=_aggregate(), sequence=1)

    cache.handle_event(event)
    after_first = _snapshot(cache)
    cache.handle_event(event)

    assert _snapshot(cache) == after_first
    assert cache.on_new_aggregate(_aggregate()) is False


def test_confirmed_aggregate_advances_local_tracker() -> None:
    cache = ClientCache()

    cache.on_new_aggregate(_aggregate())

    assert cache.tracker.last_computed_at(WindowKind.hourly) == WINDOW_END
    assert not cache.tracker.is_due(WindowKind.hourly, WINDOW_END + timedelta(minutes=5))
    assert cache.tracker.is_due(WindowKind.hourly, WINDOW_END + timedelta(hours=1))


def test_confirmed_aggregate_overwrites_speculative_one() -> None:
    cache = ClientCache()
    local = _aggregate(temperature=22.4)
    confirmed = _aggregate(temperature=22.0)

    assert cache.apply_local(local) is True
    assert not cache.is_confirmed(WindowKind.hourly, WINDOW_END)

    assert cache.on_new_aggregate(confirmed) is True

    assert cache.latest_aggregates[WindowKind.hourly] == confirmed
    assert cache.is_confirmed(WindowKind.hourly, WINDOW_END)
    assert cache.apply_local(local) is False
    assert cache.aggregates(WindowKind.hourly) == [confirmed]


def test_confirmed_aggregate_identical_to_speculative_still_confirms() -> None:
    cache = ClientCache()
    cache.apply_local(_aggregate())

    assert cache.on_new_aggregate(_aggregate()) is True
    assert cache.is_confirmed(WindowKind.hourly, WINDOW_END)


def test_older_window_does_not_replace_latest() -> None:
    cache = ClientCache()
    newer = _aggregate(WINDOW_END)
    older = _aggregate(WINDOW_END - timedelta(hours=2))

    cache.on_new_aggregate(newer)
    cache.on_new_aggregate(older)

    assert cache.latest_aggregates[WindowKind.hourly] == newer
    assert [a.window_end for a in cache.aggregates(WindowKind.hourly)] == [older.window_end, newer.window_end]
    assert cache.tracker.last_computed_at(WindowKind.hourly) == WINDOW_END


def test_latest_reading_only_moves_forward() -> None:
    cache = ClientCache()

    assert cache.on_new_reading(_reading(10)) is True
    assert cache.on_new_reading(_reading(5)) is False
    assert cache.on_new_reading(_reading(10)) is False
    assert cache.on_new_reading(replace(_reading(12), temperature=30.0)) is True

    assert cache.latest_reading is not None
    assert cache.latest_reading.timestamp == WINDOW_END + timedelta(minutes=12)


@pytest.mark.asyncio
async def test_refresh_pulls_current_state() -> None:
    store = LocalReadingStore()
    await store.put_reading(_reading(1))
    await store.put_reading(_reading(2))
    await store.insert_aggregate(_aggregate())
    cache = ClientCache()
    assert cache.status is CacheStatus.idle

    ok = await cache.refresh(store)

    view = cache.view()
    assert ok is True
    assert view.status is CacheStatus.ready
    assert view.latest_reading == _reading(2)
    assert view.latest_aggregates == {WindowKind.hourly: _aggregate()}
    assert view.has_data
    assert cache.tracker.last_computed_at(WindowKind.hourly) == WINDOW_END


@pytest.mark.asyncio
async def test_refresh_with_empty_store_is_ready_without_data() -> None:
    cache = ClientCache()

    await cache.refresh(LocalReadingStore())

    view = cache.view()
    assert view.status is CacheStatus.ready
    assert not view.has_data
    assert view.error is None


@pytest.mark.asyncio
async def test_refresh_failure_is_distinguishable_from_no_data() -> None:
    class OfflineStore(LocalReadingStore):
        async def latest_reading(self):
            raise TransientStoreError("store offline")

    cache = ClientCache()

    ok = await cache.refresh(OfflineStore())

    view = cache.view()
    assert ok is False
    assert view.status is CacheStatus.error
    assert view.error == "store offline"


@pytest.mark.asyncio
async def test_attached_cache_follows_channel_events() -> None:
    channel = RealtimeChannel()
    cache = ClientCache()
    subscription = cache.attach(channel)

    channel.broadcast(EventKind.new_reading, _reading(3))
    channel.broadcast(EventKind.new_aggregate, _aggregate())
    channel.broadcast(EventKind.new_aggregate, _aggregate())
    await subscription.drain()

    assert cache.latest_reading == _reading(3)
    assert cache.aggregates(WindowKind.hourly) == [_aggregate()]
    channel.unsubscribe(subscription)
    await channel.close()
