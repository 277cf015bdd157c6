"""In-process publish/subscribe hub for realtime events."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Union
from uuid import uuid4

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Realtime event kinds, valued by their wire names."""

    new_reading = "newSensorData"
    new_aggregate = "newAvgData"


@dataclass(frozen=True)
class RealtimeEvent:
    kind: EventKind
    payload: Any
    sequence: int


Handler = Callable[[RealtimeEvent], Union[Awaitable[None], None]]


@dataclass(eq=False)
class Subscription:
    """Handle for one subscriber; release it with ``unsubscribe`` or ``with``."""

    subscription_id: str
    kinds: FrozenSet[EventKind]
    handler: Handler
    _channel: "RealtimeChannel"
    _queue: "asyncio.Queue[RealtimeEvent]"
    _task: Optional["asyncio.Task[None]"] = None
    active: bool = True
    delivered: int = 0
    dropped: int = 0
    last_error: Optional[BaseException] = field(default=None, repr=False)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._channel.unsubscribe(self)

    async def drain(self) -> None:
        """Wait until every queued event has been handed to the handler."""
        await self._queue.join()


class RealtimeChannel:
    """Fans events out to every currently connected subscriber.

    Delivery is at-most-once and best effort: there is no buffering for
    subscribers that are gone and no replay for ones that join later. Each
    subscription has its own queue and delivery task, so events reach a given
    subscriber in publish order and a slow subscriber only delays itself.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscriptions: Dict[str, Subscription] = {}
        self._sequence = itertools.count(1)

    @property
    def queue_size(self) -> int:
        return self._queue_size

    def subscribe(
        self,
        kinds: Union[EventKind, Iterable[EventKind]],
        handler: Handler,
    ) -> Subscription:
        """Register ``handler`` for ``kinds``. Must be called from a running loop."""
        loop = asyncio.get_running_loop()
        selected = frozenset([kinds]) if isinstance(kinds, EventKind) else frozenset(kinds)
        if not selected:
            raise ValueError("At least one event kind is required.")

        subscription = Subscription(
            subscription_id=uuid4().hex,
            kinds=selected,
            handler=handler,
            _channel=self,
            _queue=asyncio.Queue(maxsize=self._queue_size),
        )
        subscription._task = loop.create_task(self._deliver(subscription))
        self._subscriptions[subscription.subscription_id] = subscription
        logger.debug(
            "Subscriber connected",
            extra={"subscription_id": subscription.subscription_id},
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        self._subscriptions.pop(subscription.subscription_id, None)
        if subscription._task is not None:
            subscription._task.cancel()
        logger.debug(
            "Subscriber released",
            extra={"subscription_id": subscription.subscription_id},
        )

    def broadcast(self, kind: EventKind, payload: Any) -> int:
        """Queue ``payload`` for every active subscriber of ``kind``.

        Returns the number of subscribers the event was queued for.
        """
        event = RealtimeEvent(kind=kind, payload=payload, sequence=next(self._sequence))
        queued = 0
        for subscription in list(self._subscriptions.values()):
            if kind not in subscription.kinds:
                continue
            try:
                subscription._queue.put_nowait(event)
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning(
                    "Subscriber queue full; event dropped",
                    extra={
                        "subscription_id": subscription.subscription_id,
                        "event": kind,
                    },
                )
                continue
            queued += 1
        return queued

    def subscriber_count(self, kind: Optional[EventKind] = None) -> int:
        if kind is None:
            return len(self._subscriptions)
        return sum(1 for sub in self._subscriptions.values() if kind in sub.kinds)

    async def close(self) -> None:
        subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            self.unsubscribe(subscription)
        tasks = [sub._task for sub in subscriptions if sub._task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _deliver(self, subscription: Subscription) -> None:
        queue = subscription._queue
        while True:
            event = await queue.get()
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
                subscription.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - handler failures stay local
                subscription.last_error = exc
                logger.warning(
                    "Subscriber handler failed: %s",
                    exc,
                    extra={
                        "subscription_id": subscription.subscription_id,
                        "event": event.kind,
                    },
                )
            finally:
                queue.task_done()
