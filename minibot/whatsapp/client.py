"""
WhatsApp Protocol Client
========================

Narrow async interface over the WhatsApp Web protocol library.

The bot only needs a handful of operations (connect, send text, send a
chat-state indicator, request a pairing code) and three events. Everything
below that line (noise handshake, Signal sessions, binary framing) lives in
pyaileys.

Events emitted by every ProtocolClient:
- ``credentials-updated``: credentials changed, persist them
- ``connection-update``: a ConnectionUpdate
- ``message-received``: an InboundMessage
"""

import asyncio
import inspect
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import ClientNotConnectedError, PairingError

logger = logging.getLogger(__name__)

CREDENTIALS_UPDATED = "credentials-updated"
CONNECTION_UPDATE = "connection-update"
MESSAGE_RECEIVED = "message-received"

EVENTS = (CREDENTIALS_UPDATED, CONNECTION_UPDATE, MESSAGE_RECEIVED)

PRESENCE_STATES = ("composing", "recording", "paused")

_STREAM_ERROR_CODE = re.compile(r"stream error (\d+)")


class DisconnectReason(Enum):
    """Why a connection closed."""
    NONE = "none"
    CONNECTION_LOST = "connection_lost"
    RESTART_REQUIRED = "restart_required"
    LOGGED_OUT = "logged_out"
    REPLACED = "replaced"
    UNKNOWN = "unknown"


# WhatsApp stream:error codes (Baileys DisconnectReason numbering)
_REASON_BY_CODE = {
    401: DisconnectReason.LOGGED_OUT,
    440: DisconnectReason.REPLACED,
    515: DisconnectReason.RESTART_REQUIRED,
}


def classify_disconnect(error: Optional[BaseException]) -> DisconnectReason:
    """Map the library's close error to a DisconnectReason."""
    if error is None:
        return DisconnectReason.NONE

    code = getattr(error, "status_code", None)
    if code is None:
        match = _STREAM_ERROR_CODE.search(str(error))
        if match:
            code = int(match.group(1))

    if code is not None:
        return _REASON_BY_CODE.get(int(code), DisconnectReason.CONNECTION_LOST)
    return DisconnectReason.CONNECTION_LOST


@dataclass
class ConnectionUpdate:
    """Connection lifecycle change."""
    connection: Optional[str] = None  # "connecting" | "open" | "close"
    qr: Optional[str] = None
    reason: DisconnectReason = DisconnectReason.NONE
    error: Optional[str] = None


@dataclass
class InboundMessage:
    """Incoming chat message. Built per event, never stored."""
    sender_id: str
    chat_id: str
    text: str
    from_self: bool = False
    message_id: str = ""


def normalize_message(payload: Dict[str, Any], self_id: Optional[str] = None) -> Optional[InboundMessage]:
    """
    Convert a decrypted-message payload into an InboundMessage.

    Payload shape (pyaileys ``message.decrypted``):
    {
        "id": "3EB0...",
        "chat_jid": "15551234567@s.whatsapp.net",
        "sender_jid": "15551234567@s.whatsapp.net",
        "timestamp_s": 1706543210,
        "text": "hello",
        "message": <proto.Message>
    }

    Returns None when there is no chat or no text to act on.
    """
    if not payload:
        return None

    text = payload.get("text")
    chat_id = payload.get("chat_jid")
    if not text or not chat_id:
        return None

    sender_id = payload.get("sender_jid") or chat_id
    from_self = payload.get("from_me")
    if from_self is None:
        from_self = bool(self_id) and _same_user(sender_id, self_id)

    return InboundMessage(
        sender_id=sender_id,
        chat_id=chat_id,
        text=text,
        from_self=bool(from_self),
        message_id=payload.get("id") or "",
    )


def _same_user(a: str, b: str) -> bool:
    """Compare two JIDs ignoring the device suffix."""
    def user(jid: str) -> str:
        local, _, server = jid.partition("@")
        return f"{local.split(':')[0]}@{server}"
    return user(a) == user(b)


class ProtocolClient(ABC):
    """
    Protocol client contract used by the connection supervisor.

    Subclasses implement the transport calls; listener bookkeeping and
    event delivery live here.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable]] = {name: [] for name in EVENTS}

    def on(self, event: str, callback: Callable) -> None:
        """Register a listener for one of EVENTS."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)

    async def _emit(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"{event} listener error: {e}", exc_info=True)

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> None:
        ...

    @abstractmethod
    async def send_presence(self, chat_id: str, state: str) -> None:
        ...

    @abstractmethod
    async def request_pairing_code(self, phone_number: str) -> str:
        ...


class PyaileysClient(ProtocolClient):
    """
    ProtocolClient backed by ``pyaileys.WhatsAppClient``.

    The library's own auto-reconnect is switched off: restarts belong to
    the ConnectionSupervisor.
    """

    def __init__(self, client: Any, self_id: Optional[str] = None, send_timeout: float = 15.0) -> None:
        super().__init__()
        self._client = client
        self._self_id = self_id
        self._send_timeout = send_timeout
        self._connected = False
        self._closing = False

        client.on("creds.update", self._on_creds_update)
        client.on("connection.update", self._on_connection_update)
        client.on("message.decrypted", self._on_message)

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._closing = False
        await self._client.connect()

    async def disconnect(self) -> None:
        self._closing = True
        self._connected = False
        await self._client.disconnect()

    async def send_message(self, chat_id: str, text: str) -> None:
        if not self._connected:
            raise ClientNotConnectedError("WhatsApp client is not connected")
        await asyncio.wait_for(self._client.send_text(chat_id, text), timeout=self._send_timeout)
        logger.debug(f"Sent message to {chat_id}")

    async def send_presence(self, chat_id: str, state: str) -> None:
        if state not in PRESENCE_STATES:
            raise ValueError(f"Unsupported presence state: {state}")
        if not self._connected:
            raise ClientNotConnectedError("WhatsApp client is not connected")
        await asyncio.wait_for(self._client.send_chatstate(chat_id, state), timeout=self._send_timeout)

    async def request_pairing_code(self, phone_number: str) -> str:
        request = getattr(self._client, "request_pairing_code", None)
        if request is None:
            raise PairingError(
                "Phone-number pairing is not supported by the installed pyaileys version; "
                "scan the QR code instead"
            )
        return await request(phone_number)

    # =========================================================================
    # LIBRARY EVENTS
    # =========================================================================

    async def _on_creds_update(self, creds: Any) -> None:
        me = getattr(creds, "me", None)
        if me is not None and getattr(me, "id", None):
            self._self_id = me.id
        await self._emit(CREDENTIALS_UPDATED, creds)

    def _library_restarting(self) -> bool:
        """True while pyaileys is running its own post-pairing restart (stream error 515)."""
        socket = getattr(self._client, "socket", None)
        task = getattr(socket, "_restart_task", None)
        return task is not None and not task.done()

    async def _on_connection_update(self, update: Any) -> None:
        connection = getattr(update, "connection", None)
        qr = getattr(update, "qr", None)
        error = getattr(update, "last_disconnect", None)

        reason = DisconnectReason.NONE
        if connection == "open":
            self._connected = True
        elif connection == "close":
            self._connected = False
            reason = classify_disconnect(error)
            if error is None and not self._closing:
                if self._library_restarting():
                    # the library reconnects this same client
                    await self._emit(
                        CONNECTION_UPDATE,
                        ConnectionUpdate(connection="connecting", reason=DisconnectReason.RESTART_REQUIRED),
                    )
                    return
                # keepalive timeout and other silent drops; no library reconnect follows
                reason = DisconnectReason.CONNECTION_LOST

        if connection is None and qr is None:
            return

        await self._emit(
            CONNECTION_UPDATE,
            ConnectionUpdate(
                connection=connection,
                qr=qr,
                reason=reason,
                error=str(error) if error else None,
            ),
        )

    async def _on_message(self, payload: Dict[str, Any]) -> None:
        message = normalize_message(payload, self._self_id)
        if message is None:
            logger.debug(f"Skipping message without text: {payload.get('id')}")
            return
        await self._emit(MESSAGE_RECEIVED, message)


async def connect_pyaileys(store: Any, settings: Any) -> PyaileysClient:
    """
    Build a PyaileysClient bound to a SessionStore.

    Args:
        store: SessionStore holding the loaded auth state
        settings: Settings (browser label, send timeout)

    Returns:
        PyaileysClient, not yet connected
    """
    from pyaileys import WhatsAppClient
    from pyaileys.auth.state import AuthenticationState
    from pyaileys.client import ClientConfig
    from pyaileys.socket_config import SocketConfig

    auth_state = store.state
    auth = AuthenticationState(creds=auth_state.creds, keys=auth_state.keys)
    config = ClientConfig(socket=SocketConfig(auto_reconnect=False, browser=tuple(settings.browser)))
    client = WhatsAppClient(auth=auth, config=config)

    me = getattr(auth_state.creds, "me", None)
    return PyaileysClient(
        client,
        self_id=getattr(me, "id", None),
        send_timeout=settings.send_timeout,
    )
