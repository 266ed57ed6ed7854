"""WebSocket fan-out of live ActivityEvents."""
from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from activity_tracker.date_utils import utc_now_iso
from activity_tracker.models import ActivityEvent

logger = logging.getLogger("tracker.api")

live_router = APIRouter(tags=["live"])


class LiveHub:
    """Connected WebSocket clients; a failed send drops that client."""

    def __init__(self) -> None:
        self.clients: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.clients.add(websocket)
        await websocket.send_json({"type": "connected", "timestamp": utc_now_iso()})
        logger.info(f"Live client connected ({len(self.clients)} total)")

    def disconnect(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)

    async def broadcast(self, event: ActivityEvent) -> None:
        payload = event.model_dump()
        for websocket in list(self.clients):
            try:
                await websocket.send_json(payload)
            except Exception as e:
                logger.debug(f"Dropping live client after failed send: {e}")
                self.clients.discard(websocket)


@live_router.websocket("/ws")
async def live_updates(websocket: WebSocket):
    hub: LiveHub = websocket.app.state.live_hub
    await hub.connect(websocket)
    try:
        while True:
            # Inbound frames are ignored; receiving detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
