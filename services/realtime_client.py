"""WebSocket listener that mirrors the server's realtime events locally."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from app.schemas import decode_event
from services.realtime import EventKind, RealtimeChannel

logger = logging.getLogger(__name__)

ConnectCallback = Callable[[], Awaitable[object]]


def websocket_url(base_url: str, path: str = "/ws") -> str:
    """Derive the ``ws://`` / ``wss://`` endpoint from an HTTP base URL."""
    parts = urlsplit(base_url.rstrip("/"))
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, f"{parts.path}{path}", "", ""))


class RealtimeListener:
    """Receives ``newSensorData`` / ``newAvgData`` frames and rebroadcasts them.

    Subscribers attach to :attr:`channel` once; their subscriptions survive
    reconnects. Nothing missed while disconnected is replayed, so every
    on-connect callback runs after each successful (re)connect to pull
    current state.
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        channel: Optional[RealtimeChannel] = None,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ) -> None:
        self.url = url
        self.token = token
        self.channel = channel or RealtimeChannel()
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._connect_callbacks: List[ConnectCallback] = []
        self._stopped = asyncio.Event()
        self.connected = False
        self.connections = 0
        self.retry_delay = reconnect_delay

    def on_connect(self, callback: ConnectCallback) -> None:
        self._connect_callbacks.append(callback)

    def dispatch_message(self, raw: str) -> Optional[EventKind]:
        """Decode one text frame and broadcast it; malformed frames are dropped."""
        try:
            kind, record = decode_event(json.loads(raw))
        except ValueError as exc:
            logger.warning("Dropping malformed realtime frame", extra={"reason": str(exc)})
            return None
        self.channel.broadcast(kind, record)
        return kind

    def stop(self) -> None:
        self._stopped.set()

    async def run(self) -> None:
        self.retry_delay = self.reconnect_delay
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        async with aiohttp.ClientSession(headers=headers) as session:
            while not self._stopped.is_set():
                try:
                    async with session.ws_connect(self.url, heartbeat=30.0) as ws:
                        self.connected = True
                        self.connections += 1
                        self.retry_delay = self.reconnect_delay
                        logger.info("Realtime connection established", extra={"status": "connected"})
                        for callback in self._connect_callbacks:
                            await callback()
                        await self._consume_until_stopped(ws)
                except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
                    logger.warning(
                        "Realtime connection failed; retrying in %.1fs",
                        self.retry_delay,
                        extra={"reason": str(exc)},
                    )
                finally:
                    self.connected = False

                if self._stopped.is_set():
                    break
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.retry_delay)
                except asyncio.TimeoutError:
                    pass
                self.retry_delay = min(self.retry_delay * 2, self.max_reconnect_delay)

    async def _consume_until_stopped(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        consume = asyncio.ensure_future(self._consume(ws))
        stopped = asyncio.ensure_future(self._stopped.wait())
        try:
            await asyncio.wait({consume, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (consume, stopped):
                task.cancel()
        if consume.done() and not consume.cancelled():
            consume.result()

    async def _consume(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for message in ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                self.dispatch_message(message.data)
            elif message.type == aiohttp.WSMsgType.ERROR:
                logger.warning("Realtime socket error", extra={"reason": str(ws.exception())})
                return
        logger.info("Realtime connection closed", extra={"status": "disconnected"})
