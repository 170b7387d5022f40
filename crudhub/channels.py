"""Utilities for streaming record events over WebSockets."""
from __future__ import annotations

import json
from contextlib import suppress
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from .broadcaster import Broadcaster, Event
from .errors import BroadcastError


async def send_websocket_json(websocket: WebSocket, payload: dict[str, Any]) -> None:
    """Send a JSON payload to a websocket client, raising on failure."""

    if websocket.client_state == WebSocketState.DISCONNECTED:
        raise BroadcastError("Listener websocket is already disconnected")
    try:
        await websocket.send_json(payload)
    except Exception as exc:
        raise BroadcastError(f"Failed to send event to listener: {exc}") from exc


class WebSocketListener:
    """Adapts a FastAPI websocket to the broadcaster's listener interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send(self, event: Event) -> None:
        await send_websocket_json(self._websocket, event.to_message())


async def stream_events(websocket: WebSocket, broadcaster: Broadcaster) -> None:
    """Subscribe ``websocket`` to ``broadcaster`` until the client goes away.

    Clients only listen; the one message understood from them is
    ``{"type": "close"}``, which ends the subscription.
    """

    await websocket.accept()
    handle = await broadcaster.connect(WebSocketListener(websocket))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                continue
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict) and payload.get("type") == "close":
                break
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(handle)
        with suppress(Exception):
            if websocket.application_state != WebSocketState.DISCONNECTED:
                await websocket.close()


__all__ = ["WebSocketListener", "send_websocket_json", "stream_events"]
