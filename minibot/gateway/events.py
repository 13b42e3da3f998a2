"""
Realtime Events
===============

Broadcast hub for browser WebSocket clients and QR rendering.

Frames are JSON objects in both directions:

    {"event": "status", "data": {"connected": true}}
"""

import asyncio
import base64
import logging
from datetime import datetime
from typing import Any, Dict, Set

import qrcode
from qrcode.image.svg import SvgImage

logger = logging.getLogger(__name__)


def make_frame(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data, "timestamp": datetime.now().isoformat()}


def render_qr_data_uri(payload: str) -> str:
    """Encode a raw QR payload as an ``image/svg+xml`` data URI."""
    image = qrcode.make(payload, image_factory=SvgImage)
    svg = image.to_string()
    return "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")


class BroadcastHub:
    """
    Tracks connected browser sockets.

    Every socket is a subscriber of the same supervisor state; none owns it.
    """

    def __init__(self):
        self._sockets: Set[Any] = set()
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        return len(self._sockets)

    async def add(self, websocket: Any) -> None:
        async with self._lock:
            self._sockets.add(websocket)
        logger.info(f"Browser connected. Total: {self.count}")

    async def discard(self, websocket: Any) -> None:
        async with self._lock:
            self._sockets.discard(websocket)
        logger.info(f"Browser disconnected. Total: {self.count}")

    async def send(self, websocket: Any, event: str, data: Any) -> bool:
        """Send one frame to one socket. Returns False if the socket is gone."""
        try:
            await websocket.send_json(make_frame(event, data))
            return True
        except Exception as e:
            logger.debug(f"Failed to send to WebSocket: {e}")
            await self.discard(websocket)
            return False

    async def broadcast(self, event: str, data: Any) -> None:
        async with self._lock:
            sockets = list(self._sockets)
        for websocket in sockets:
            await self.send(websocket, event, data)
