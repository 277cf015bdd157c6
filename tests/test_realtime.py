from __future__ import annotations

import asyncio

import pytest

from services.realtime import EventKind, RealtimeChannel, RealtimeEvent


@pytest.mark.asyncio
async def test_events_reach_each_subscriber_in_publish_order() -> None:
    channel = RealtimeChannel()
    first: list[object] = []
    second: list[object] = []

    sub_a = channel.subscribe(EventKind.new_reading, lambda event: first.append(event.payload))
    sub_b = channel.subscribe(
        (EventKind.new_reading, EventKind.new_aggregate),
        lambda event: second.append(event.payload),
    )

    channel.broadcast(EventKind.new_reading, "r1")
    channel.broadcast(EventKind.new_aggregate, "a1")
    channel.broadcast(EventKind.new_reading, "r2")
    await sub_a.drain()
    await sub_b.drain()

    assert first == ["r1", "r2"]
    assert second == ["r1", "a1", "r2"]
    await channel.close()


@pytest.mark.asyncio
async def test_async_handlers_are_awaited_in_order() -> None:
    channel = RealtimeChannel()
    seen: list[int] = []

    async def slow_handler(event: RealtimeEvent) -> None:
        await asyncio.sleep(0.01 if event.payload == 1 else 0)
        seen.append(event.payload)

    subscription = channel.subscribe(EventKind.new_aggregate, slow_handler)
    for value in (1, 2, 3):
        channel.broadcast(EventKind.new_aggregate, value)
    await subscription.drain()

    assert seen == [1, 2, 3]
    await channel.close()


@pytest.mark.asyncio
async def test_unsubscribed_handler_receives_nothing_more() -> None:
    channel = RealtimeChannel()
    seen: list[object] = []

    with channel.subscribe(EventKind.new_reading, lambda event: seen.append(event.payload)) as subscription:
        channel.broadcast(EventKind.new_reading, "before")
        await subscription.drain()

    delivered = channel.broadcast(EventKind.new_reading, "after")
    await asyncio.sleep(0)

    assert seen == ["before"]
    assert delivered == 0
    assert not subscription.active
    assert channel.subscriber_count() == 0


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_replay() -> None:
    channel = RealtimeChannel()
    channel.broadcast(EventKind.new_aggregate, "missed")
    seen: list[object] = []

    subscription = channel.subscribe(EventKind.new_aggregate, lambda event: seen.append(event.payload))
    channel.broadcast(EventKind.new_aggregate, "live")
    await subscription.drain()

    assert seen == ["live"]
    await channel.close()


@pytest.mark.asyncio
async def test_failing_handler_does_not_affect_others() -> None:
    channel = RealtimeChannel()
    seen: list[object] = []

    def broken(event: RealtimeEvent) -> None:
        raise RuntimeError("boom")

    bad = channel.subscribe(EventKind.new_reading, broken)
    good = channel.subscribe(EventKind.new_reading, lambda event: seen.append(event.payload))
    channel.broadcast(EventKind.new_reading, "r1")
    channel.broadcast(EventKind.new_reading, "r2")
    await bad.drain()
    await good.drain()

    assert seen == ["r1", "r2"]
    assert isinstance(bad.last_error, RuntimeError)
    assert bad.active
    await channel.close()


@pytest.mark.asyncio
async def test_full_queue_drops_for_that_subscriber_only() -> None:
    channel = RealtimeChannel(queue_size=1)
    release = asyncio.Event()
    slow_seen: list[object] = []
    fast_seen: list[object] = []

    async def slow(event: RealtimeEvent) -> None:
        await release.wait()
        slow_seen.append(event.payload)

    slow_sub = channel.subscribe(EventKind.new_reading, slow)
    fast_sub = channel.subscribe(EventKind.new_reading, lambda event: fast_seen.append(event.payload))

    channel.broadcast(EventKind.new_reading, 1)
    await fast_sub.drain()
    await asyncio.sleep(0)  # slow handler now holds event 1
    channel.broadcast(EventKind.new_reading, 2)
    await fast_sub.drain()
    channel.broadcast(EventKind.new_reading, 3)
    await fast_sub.drain()
    release.set()
    await slow_sub.drain()

    assert fast_seen == [1, 2, 3]
    assert slow_seen == [1, 2]
    assert slow_sub.dropped == 1
    await channel.close()


@pytest.mark.asyncio
async def test_subscribe_requires_event_kind() -> None:
    channel = RealtimeChannel()

    with pytest.raises(ValueError):
        channel.subscribe([], lambda event: None)
