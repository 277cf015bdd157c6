"""WebSocket endpoint that streams realtime events to connected clients."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, status

from app.api import token_matches
from app.schemas import encode_event
from services.realtime import EventKind, RealtimeEvent
from services.runtime import ServiceRuntime

logger = logging.getLogger(__name__)

router = APIRouter()


def _socket_authorized(websocket: WebSocket, expected: str | None) -> bool:
    if token_matches(expected, websocket.headers.get("authorization")):
        return True
    query_token = websocket.query_params.get("token")
    return bool(query_token) and token_matches(expected, f"Bearer {query_token}")


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    runtime: ServiceRuntime = websocket.app.state.runtime
    if not _socket_authorized(websocket, runtime.settings.api_token):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def forward(event: RealtimeEvent) -> None:
        await websocket.send_json(encode_event(event.kind, event.payload))

    kinds = (EventKind.new_reading, EventKind.new_aggregate)
    with runtime.channel.subscribe(kinds, forward) as subscription:
        context = {"subscription_id": subscription.subscription_id}
        logger.info("Realtime subscriber connected", extra=context)
        # Client frames carry no commands, text or binary; only the disconnect matters.
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
        logger.info("Realtime subscriber disconnected", extra=context)
