"""
Control Gateway
===============

HTTP + WebSocket control page for the bot.

Endpoints:
- GET  /            control page (QR code, pairing form, log)
- GET  /api/status  {"connected": bool, "botName": str}
- GET  /health      supervisor state and browser count
- WS   /ws          realtime channel

Realtime events, server -> browser: qr, status, pairing-code, log.
Realtime actions, browser -> server: request-pairing, restart.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from ..config import Settings
from ..exceptions import PairingError
from ..whatsapp.supervisor import ConnectionState, ConnectionSupervisor
from .events import BroadcastHub, render_qr_data_uri

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"


class ControlGateway:
    """
    Control-plane gateway.

    Relays supervisor events to every connected browser and forwards
    pairing and restart requests to the supervisor.
    """

    def __init__(self, supervisor: ConnectionSupervisor, settings: Settings, autostart: bool = True):
        self.supervisor = supervisor
        self.settings = settings
        self.autostart = autostart
        self.hub = BroadcastHub()
        self._app: Optional[FastAPI] = None
        self._boot_task: Optional[asyncio.Task] = None

        supervisor.subscribe(self._relay)

    async def _relay(self, event: str, payload: Any) -> None:
        """Supervisor listener: fan events out to all browsers."""
        if event == "qr":
            await self.hub.broadcast("qr", render_qr_data_uri(payload))
        else:
            await self.hub.broadcast(event, payload)

    async def _boot(self) -> None:
        try:
            await self.supervisor.ensure_started()
        except Exception as e:
            logger.error(f"Could not start WhatsApp client: {e}", exc_info=True)

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        if self.autostart:
            self._boot_task = asyncio.create_task(self._boot())
        try:
            yield
        finally:
            if self._boot_task is not None and not self._boot_task.done():
                self._boot_task.cancel()
            await self.supervisor.stop()

    def create_app(self) -> FastAPI:
        """Create FastAPI application with all endpoints."""
        app = FastAPI(
            title=f"{self.settings.bot.name} Control",
            description="WhatsApp bot pairing and status page",
            version=self.settings.bot.version,
            lifespan=self.lifespan,
        )

        if STATIC_DIR.exists():
            app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

        @app.get("/")
        async def root():
            return FileResponse(STATIC_DIR / "index.html")

        @app.get("/api/status")
        async def status():
            return self.supervisor.snapshot()

        @app.get("/health")
        async def health():
            return {
                "status": "healthy",
                "state": self.supervisor.state.value,
                "clients": self.hub.count,
            }

        @app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            await websocket.accept()
            await self.hub.add(websocket)
            try:
                await self._on_browser_connected(websocket)
                while True:
                    raw = await websocket.receive_text()
                    await self._on_browser_frame(websocket, raw)
            except WebSocketDisconnect:
                pass
            except Exception as e:
                logger.error(f"WebSocket error: {e}", exc_info=True)
            finally:
                await self.hub.discard(websocket)

        self._app = app
        return app

    # =========================================================================
    # BROWSER CHANNEL
    # =========================================================================

    async def _on_browser_connected(self, websocket: WebSocket) -> None:
        try:
            await self.supervisor.ensure_started()
        except Exception as e:
            logger.error(f"Could not start WhatsApp client: {e}", exc_info=True)
            await self.hub.send(websocket, "log", {"type": "error", "message": f"Could not start WhatsApp client: {e}"})

        supervisor = self.supervisor
        await self.hub.send(
            websocket, "status", {"connected": supervisor.connected, "state": supervisor.state.value}
        )
        if supervisor.last_qr and supervisor.state == ConnectionState.AWAITING_QR:
            await self.hub.send(websocket, "qr", render_qr_data_uri(supervisor.last_qr))

    async def _on_browser_frame(self, websocket: WebSocket, raw: str) -> None:
        try:
            frame = json.loads(raw)
            event = frame["event"]
        except (ValueError, KeyError, TypeError):
            await self.hub.send(websocket, "log", {"type": "warning", "message": "Malformed message ignored"})
            return

        data = frame.get("data")
        if event == "request-pairing":
            await self._handle_pairing(websocket, data)
        elif event == "restart":
            await self._handle_restart(websocket)
        else:
            await self.hub.send(websocket, "log", {"type": "warning", "message": f"Unknown action: {event}"})

    async def _handle_pairing(self, websocket: WebSocket, data: Any) -> None:
        if isinstance(data, dict):
            phone = data.get("phone") or data.get("phoneNumber")
        else:
            phone = data
        try:
            record = await self.supervisor.request_pairing_code(phone)
        except PairingError as e:
            logger.warning(f"Pairing code request failed: {e}")
            await self.hub.send(
                websocket, "log", {"type": "error", "message": f"Failed to generate pairing code: {e}"}
            )
            return
        except Exception as e:
            logger.error(f"Pairing code request failed: {e}", exc_info=True)
            await self.hub.send(
                websocket, "log", {"type": "error", "message": f"Failed to generate pairing code: {e}"}
            )
            return

        await self.hub.send(websocket, "pairing-code", {"code": record.code, "phone": record.phone_number})
        await self.hub.send(
            websocket, "log", {"type": "success", "message": f"Pairing code generated: {record.code}"}
        )

    async def _handle_restart(self, websocket: WebSocket) -> None:
        try:
            await self.supervisor.restart()
        except Exception as e:
            logger.error(f"Restart failed: {e}", exc_info=True)
            await self.hub.send(websocket, "log", {"type": "error", "message": f"Restart failed: {e}"})

    # =========================================================================
    # SERVING
    # =========================================================================

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            self.create_app()
        return self._app

    async def run_async(self) -> None:
        """Run gateway server asynchronously."""
        config = uvicorn.Config(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()

    def run(self) -> None:
        """Run gateway server (blocking)."""
        uvicorn.run(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
