"""
Connection Supervisor
=====================

Owns the single live ProtocolClient, binds it to the SessionStore and
restarts it after unexpected closes.

State machine:

    DISCONNECTED -> CONNECTING -> AWAITING_QR / AWAITING_PAIRING -> CONNECTED
         ^                                                             |
         +---------------- close (restart with backoff) ---------------+

    close with LOGGED_OUT -> LOGGED_OUT (terminal until a manual restart)

Observers registered with ``subscribe`` receive ``(event, payload)`` for
``qr`` (raw QR string), ``status`` and ``log``.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import Settings
from ..exceptions import ClientAlreadyRunningError, ClientNotConnectedError, PairingError
from .client import (
    CONNECTION_UPDATE,
    CREDENTIALS_UPDATED,
    MESSAGE_RECEIVED,
    ConnectionUpdate,
    DisconnectReason,
    InboundMessage,
    ProtocolClient,
    connect_pyaileys,
)
from .session import SessionStore

logger = logging.getLogger(__name__)

Connector = Callable[[SessionStore, Settings], Awaitable[ProtocolClient]]
StoreLoader = Callable[[Path], Awaitable[SessionStore]]
Listener = Callable[[str, Any], Awaitable[None]]

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_PHONE_DIGITS = re.compile(r"\D")


class ConnectionState(Enum):
    """Connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_QR = "awaiting_qr"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


@dataclass
class PairingRecord:
    """Pairing code issued for one phone number during one pairing flow."""
    phone_number: str
    code: str
    created_at: float = field(default_factory=time.time)


def normalize_phone(phone_number: Any) -> str:
    """Strip everything but digits; E.164 numbers have 7-15 digits."""
    digits = _PHONE_DIGITS.sub("", str(phone_number or ""))
    if not 7 <= len(digits) <= 15:
        raise PairingError(f"Invalid phone number: {phone_number!r} (use country code + number)")
    return digits


class ConnectionSupervisor:
    """
    Supervises one WhatsApp protocol client.

    Usage:
        supervisor = ConnectionSupervisor(settings, dispatcher)
        supervisor.subscribe(listener)
        await supervisor.ensure_started()
    """

    def __init__(
        self,
        settings: Settings,
        dispatcher: Any,
        connector: Connector = connect_pyaileys,
        store_loader: StoreLoader = SessionStore.load,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.dispatcher = dispatcher
        self._connector = connector
        self._load_store = store_loader
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.pairing_codes: Dict[str, PairingRecord] = {}
        self.start_count = 0

        self._client: Optional[ProtocolClient] = None
        self._store: Optional[SessionStore] = None
        self._starting = False
        self._stopped = False
        self._attempts = 0
        self._restart_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._last_qr: Optional[str] = None
        self._listeners: List[Listener] = []
        self._dispatch_lock = asyncio.Lock()

        dispatcher.bind(self)

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def client(self) -> Optional[ProtocolClient]:
        return self._client

    @property
    def last_qr(self) -> Optional[str]:
        """Latest QR payload while a scan is pending."""
        return self._last_qr

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view served by /api/status."""
        return {"connected": self.connected, "botName": self.settings.bot.name}

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, payload)
            except Exception as e:
                logger.error(f"Listener failed on {event}: {e}", exc_info=True)

    async def log(self, type: str, message: str) -> None:
        """Write to the Python log and push a ``log`` event to observers."""
        logger.log(_LOG_LEVELS.get(type, logging.INFO), message)
        await self._notify("log", {"type": type, "message": message})

    async def _push_status(self) -> None:
        await self._notify("status", {"connected": self.connected, "state": self.state.value})

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.info(f"Connection state: {self.state.value} -> {state.value}")
            self.state = state
            if state == ConnectionState.CONNECTING:
                self._arm_watchdog()
            else:
                self._cancel_watchdog()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> ProtocolClient:
        """
        Create, bind and connect a new protocol client.

        Raises:
            ClientAlreadyRunningError: a client is already live or starting
        """
        if self._client is not None or self._starting:
            raise ClientAlreadyRunningError("A WhatsApp client is already running")

        self._starting = True
        self._stopped = False
        try:
            self._store = await self._load_store(self.settings.session_path)
            client = await self._connector(self._store, self.settings)
            client.on(CREDENTIALS_UPDATED, self._store.save)
            client.on(CONNECTION_UPDATE, lambda update: self._on_connection_update(client, update))
            client.on(MESSAGE_RECEIVED, self._on_message)
            self._client = client
            self.start_count += 1
            self._set_state(ConnectionState.CONNECTING)
        finally:
            self._starting = False

        logger.info(f"Starting WhatsApp client (start #{self.start_count})")
        try:
            await client.connect()
        except Exception as e:
            logger.error(f"WhatsApp connect failed: {e}")
            if client is self._client:
                await self._handle_close(
                    client,
                    ConnectionUpdate(
                        connection="close", reason=DisconnectReason.CONNECTION_LOST, error=str(e)
                    ),
                )
        return client

    async def ensure_started(self) -> None:
        """
        Attach to the live client, or start one if none is running.

        After a logout nothing is started; ``restart()`` links a new device.
        """
        if self._client is not None or self._starting or self.restart_pending:
            return
        if self.state == ConnectionState.LOGGED_OUT:
            return
        self._attempts = 0
        await self.start()

    async def restart(self) -> None:
        """Manual restart: drop the current client and start a fresh one."""
        await self.log("info", "Restarting WhatsApp connection...")
        self._cancel_restart()
        await self._detach_client()
        self._attempts = 0
        self._set_state(ConnectionState.DISCONNECTED)
        await self.start()

    async def stop(self) -> None:
        """Stop supervising: cancel pending restarts and disconnect."""
        self._stopped = True
        self._cancel_restart()
        self._cancel_watchdog()
        await self._detach_client()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("WhatsApp supervisor stopped")

    async def _detach_client(self) -> None:
        client, self._client = self._client, None
        self._last_qr = None
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning(f"Error while disconnecting WhatsApp client: {e}")

    def _cancel_restart(self) -> None:
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = None

    def _arm_watchdog(self) -> None:
        self._cancel_watchdog()
        if self.settings.connect_timeout > 0 and self._client is not None:
            self._watchdog = asyncio.create_task(self._connect_watchdog(self._client))

    def _cancel_watchdog(self) -> None:
        task, self._watchdog = self._watchdog, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _connect_watchdog(self, client: ProtocolClient) -> None:
        """Treat a client stuck in CONNECTING as lost (e.g. a library restart whose reconnect failed)."""
        await asyncio.sleep(self.settings.connect_timeout)
        self._watchdog = None
        if client is not self._client or self.state != ConnectionState.CONNECTING:
            return

        logger.warning(f"No connection after {self.settings.connect_timeout:g}s, dropping client")
        await self._handle_close(
            client,
            ConnectionUpdate(connection="close", reason=DisconnectReason.CONNECTION_LOST, error="connect timeout"),
        )
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning(f"Error while disconnecting WhatsApp client: {e}")

    # =========================================================================
    # CLIENT EVENTS
    # =========================================================================

    async def _on_connection_update(self, client: ProtocolClient, update: ConnectionUpdate) -> None:
        if client is not self._client:
            logger.debug(f"Ignoring update from a replaced client: {update}")
            return

        if update.qr:
            self._last_qr = update.qr
            if self.state != ConnectionState.AWAITING_PAIRING:
                self._set_state(ConnectionState.AWAITING_QR)
            await self._notify("qr", update.qr)
            await self.log("info", "QR Code generated. Scan with WhatsApp.")

        if update.connection == "connecting":
            self._set_state(ConnectionState.CONNECTING)
        elif update.connection == "open":
            self._attempts = 0
            self._last_qr = None
            self.pairing_codes.clear()
            self._set_state(ConnectionState.CONNECTED)
            await self._push_status()
            await self.log("success", "Successfully connected to WhatsApp!")
        elif update.connection == "close":
            await self._handle_close(client, update)

    async def _handle_close(self, client: ProtocolClient, update: ConnectionUpdate) -> None:
        if client is self._client:
            self._client = None
        self._last_qr = None
        self.pairing_codes.clear()

        if update.reason == DisconnectReason.LOGGED_OUT:
            self._set_state(ConnectionState.LOGGED_OUT)
            await self._push_status()
            await self.log("warning", "Logged out from WhatsApp. Session cleared; restart to link again.")
            if self._store is not None:
                await self._store.clear()
            return

        self._set_state(ConnectionState.DISCONNECTED)
        await self._push_status()

        if self._stopped:
            return
        await self._schedule_restart(update.reason)

    async def _schedule_restart(self, reason: DisconnectReason) -> None:
        if self.restart_pending:
            logger.debug("Restart already scheduled")
            return

        self._attempts += 1
        policy = self.settings.restart
        if not policy.allows(self._attempts):
            await self.log(
                "error",
                f"Connection closed. Giving up after {policy.max_attempts} restart attempts.",
            )
            return

        delay = 0.0 if reason == DisconnectReason.RESTART_REQUIRED else policy.delay_for(self._attempts)
        await self.log(
            "warning",
            f"Connection closed. Reconnecting in {delay:.1f}s (attempt {self._attempts})...",
        )
        self._restart_task = asyncio.create_task(self._restart_after(delay))

    async def _restart_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._restart_task = None
        if self._stopped or self._client is not None:
            return
        try:
            await self.start()
        except ClientAlreadyRunningError:
            logger.debug("Client already running, skipping scheduled restart")
        except Exception as e:
            logger.error(f"Restart failed: {e}", exc_info=True)
            await self._schedule_restart(DisconnectReason.CONNECTION_LOST)

    async def _on_message(self, message: InboundMessage) -> None:
        if message.from_self or not message.text:
            return
        async with self._dispatch_lock:
            await self.dispatcher.handle(message)

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    def _live_client(self) -> ProtocolClient:
        if self._client is None or not self.connected:
            raise ClientNotConnectedError("WhatsApp is not connected")
        return self._client

    async def send_message(self, chat_id: str, text: str) -> None:
        await self._live_client().send_message(chat_id, text)

    async def send_presence(self, chat_id: str, state: str) -> None:
        await self._live_client().send_presence(chat_id, state)

    async def request_pairing_code(self, phone_number: Any) -> PairingRecord:
        """
        Ask the client for a pairing code for ``phone_number``.

        Raises:
            PairingError: invalid number, no client, already connected,
                timeout or library failure
        """
        phone = normalize_phone(phone_number)
        client = self._client
        if client is None:
            raise PairingError("WhatsApp client is not running")
        if self.connected:
            raise PairingError("Already connected to WhatsApp")

        previous = self.state
        self._set_state(ConnectionState.AWAITING_PAIRING)
        try:
            code = await asyncio.wait_for(
                client.request_pairing_code(phone), timeout=self.settings.pairing_timeout
            )
        except asyncio.TimeoutError:
            self._restore_state(client, previous)
            raise PairingError(f"Timed out after {self.settings.pairing_timeout:g}s")
        except PairingError:
            self._restore_state(client, previous)
            raise
        except Exception as e:
            self._restore_state(client, previous)
            raise PairingError(str(e)) from e

        record = PairingRecord(phone_number=phone, code=code)
        self.pairing_codes[phone] = record
        logger.info(f"Pairing code issued for {phone}")
        return record

    def _restore_state(self, client: ProtocolClient, previous: ConnectionState) -> None:
        if client is self._client and self.state == ConnectionState.AWAITING_PAIRING:
            self._set_state(previous)
