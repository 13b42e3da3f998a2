"""
Control Gateway
===============

Browser control page: connection status, QR code, pairing form and a
live log, served by FastAPI with a WebSocket realtime channel.
"""

from .events import BroadcastHub
from .server import ControlGateway

__all__ = ["BroadcastHub", "ControlGateway"]
