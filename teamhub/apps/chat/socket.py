from __future__ import annotations

import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, WebSocket

from teamhub.services.realtime.hub import RealtimeHub


logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketConnection:
    # Frames are {"event": <name>, "data": <payload>} in both directions.

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid4().hex
        self._websocket = websocket

    async def send(self, event: str, data: Any) -> None:
        await self._websocket.send_json({"event": event, "data": data})


def _decode_frame(message: dict[str, Any]) -> tuple[str, Any]:
    # Text frames only; binary and malformed frames raise ValueError.
    text = message.get("text")
    if text is None:
        raise ValueError("frames must be JSON text")
    try:
        frame = json.loads(text)
    except ValueError as exc:
        raise ValueError("frames must be JSON") from exc
    event = frame.get("event") if isinstance(frame, dict) else None
    if not isinstance(event, str) or not event:
        raise ValueError("frames must carry an event name")
    return event, frame.get("data")


@router.websocket("/socket")
async def socket_endpoint(websocket: WebSocket) -> None:
    hub: RealtimeHub = websocket.app.state.hub
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    hub.register(connection)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            try:
                event, data = _decode_frame(message)
            except ValueError as exc:
                logger.info("socket_frame_rejected connection=%s reason=%s", connection.id, exc)
                await connection.send("error", {"message": str(exc)})
                continue
            await hub.handle(connection, event, data)
    finally:
        await hub.unregister(connection)
