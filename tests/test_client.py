"""
Tests for the protocol client adapter.

The pyaileys client is replaced by a MagicMock; library events are fed in
through the listeners the adapter registers on it.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from minibot.exceptions import ClientNotConnectedError, PairingError
from minibot.whatsapp.client import (
    CONNECTION_UPDATE,
    CREDENTIALS_UPDATED,
    MESSAGE_RECEIVED,
    DisconnectReason,
    PyaileysClient,
    classify_disconnect,
    normalize_message,
)

ME = "15550009999:12@s.whatsapp.net"
CHAT = "15550001111@s.whatsapp.net"


def lib_update(connection=None, qr=None, last_disconnect=None):
    return SimpleNamespace(connection=connection, qr=qr, last_disconnect=last_disconnect)


@pytest.fixture
def lib():
    client = MagicMock(spec=["on", "connect", "disconnect", "send_text", "send_chatstate", "socket"])
    client.socket = SimpleNamespace(_restart_task=None)
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.send_text = AsyncMock()
    client.send_chatstate = AsyncMock()
    return client


@pytest.fixture
def adapter(lib):
    return PyaileysClient(lib, self_id=ME, send_timeout=1.0)


def lib_listener(lib, event):
    for call in lib.on.call_args_list:
        if call.args[0] == event:
            return call.args[1]
    raise AssertionError(f"no listener registered for {event}")


def capture(adapter, event):
    received = []

    async def listener(payload):
        received.append(payload)

    adapter.on(event, listener)
    return received


# =============================================================================
# Pure helpers
# =============================================================================

class TestClassifyDisconnect:

    def test_none(self):
        assert classify_disconnect(None) is DisconnectReason.NONE

    @pytest.mark.parametrize("code,reason", [
        (401, DisconnectReason.LOGGED_OUT),
        (440, DisconnectReason.REPLACED),
        (515, DisconnectReason.RESTART_REQUIRED),
        (503, DisconnectReason.CONNECTION_LOST),
    ])
    def test_stream_error_codes(self, code, reason):
        error = RuntimeError(f"WhatsApp stream error {code}: conflict")
        assert classify_disconnect(error) is reason

    def test_status_code_attribute(self):
        error = RuntimeError("closed")
        error.status_code = 401
        assert classify_disconnect(error) is DisconnectReason.LOGGED_OUT

    def test_plain_error_is_connection_lost(self):
        assert classify_disconnect(ConnectionResetError("reset")) is DisconnectReason.CONNECTION_LOST


class TestNormalizeMessage:

    def test_text_message(self):
        message = normalize_message(
            {"id": "3EB0", "chat_jid": CHAT, "sender_jid": CHAT, "timestamp_s": 1706543210, "text": ".ping"},
            ME,
        )
        assert message.text == ".ping"
        assert message.chat_id == CHAT
        assert message.from_self is False
        assert message.message_id == "3EB0"

    @pytest.mark.parametrize("payload", [
        {},
        {"chat_jid": CHAT, "text": None},
        {"chat_jid": CHAT, "text": ""},
        {"chat_jid": CHAT},
        {"text": "hi"},
    ])
    def test_discarded_without_text_or_chat(self, payload):
        assert normalize_message(payload, ME) is None

    def test_own_device_detected(self):
        message = normalize_message({"chat_jid": CHAT, "sender_jid": "15550009999:3@s.whatsapp.net", "text": "x"}, ME)
        assert message.from_self is True

    def test_explicit_from_me_wins(self):
        message = normalize_message({"chat_jid": CHAT, "sender_jid": CHAT, "text": "x", "from_me": True}, ME)
        assert message.from_self is True


# =============================================================================
# Adapter
# =============================================================================

class TestPyaileysClient:

    def test_registers_library_listeners(self, adapter, lib):
        events = [call.args[0] for call in lib.on.call_args_list]
        assert events == ["creds.update", "connection.update", "message.decrypted"]

    def test_unknown_event_rejected(self, adapter):
        with pytest.raises(ValueError):
            adapter.on("presence", lambda *_: None)

    @pytest.mark.asyncio
    async def test_send_requires_open_connection(self, adapter):
        with pytest.raises(ClientNotConnectedError):
            await adapter.send_message(CHAT, "hi")

    @pytest.mark.asyncio
    async def test_send_after_open(self, adapter, lib):
        await lib_listener(lib, "connection.update")(lib_update(connection="open"))

        await adapter.send_message(CHAT, "hi")
        await adapter.send_presence(CHAT, "composing")

        lib.send_text.assert_awaited_once_with(CHAT, "hi")
        lib.send_chatstate.assert_awaited_once_with(CHAT, "composing")

    @pytest.mark.asyncio
    async def test_bad_presence_state(self, adapter):
        with pytest.raises(ValueError):
            await adapter.send_presence(CHAT, "dancing")

    @pytest.mark.asyncio
    async def test_pairing_unsupported(self, adapter):
        with pytest.raises(PairingError, match="scan the QR code"):
            await adapter.request_pairing_code("15551234567")

    @pytest.mark.asyncio
    async def test_qr_and_open_translated(self, adapter, lib):
        updates = capture(adapter, CONNECTION_UPDATE)
        listener = lib_listener(lib, "connection.update")

        await listener(lib_update(qr="2@abc"))
        await listener(lib_update(connection="open"))

        assert updates[0].qr == "2@abc"
        assert updates[1].connection == "open"
        assert adapter.connected

    @pytest.mark.asyncio
    async def test_close_carries_reason(self, adapter, lib):
        updates = capture(adapter, CONNECTION_UPDATE)
        listener = lib_listener(lib, "connection.update")

        await listener(lib_update(connection="open"))
        await listener(lib_update(connection="close", last_disconnect=RuntimeError("WhatsApp stream error 401: x")))

        assert updates[-1].connection == "close"
        assert updates[-1].reason is DisconnectReason.LOGGED_OUT
        assert not adapter.connected

    @pytest.mark.asyncio
    async def test_library_restart_reported_as_connecting(self, adapter, lib):
        restart_task = MagicMock()
        restart_task.done.return_value = False
        lib.socket._restart_task = restart_task
        updates = capture(adapter, CONNECTION_UPDATE)

        await lib_listener(lib, "connection.update")(lib_update(connection="close"))

        assert updates[0].connection == "connecting"
        assert updates[0].reason is DisconnectReason.RESTART_REQUIRED

    @pytest.mark.asyncio
    async def test_finished_restart_task_is_ignored(self, adapter, lib):
        restart_task = MagicMock()
        restart_task.done.return_value = True
        lib.socket._restart_task = restart_task
        updates = capture(adapter, CONNECTION_UPDATE)

        await lib_listener(lib, "connection.update")(lib_update(connection="close"))

        assert updates[0].connection == "close"

    @pytest.mark.asyncio
    async def test_silent_close_is_connection_lost(self, adapter, lib):
        updates = capture(adapter, CONNECTION_UPDATE)
        listener = lib_listener(lib, "connection.update")

        await listener(lib_update(connection="open"))
        await listener(lib_update(connection="close"))

        assert updates[-1].connection == "close"
        assert updates[-1].reason is DisconnectReason.CONNECTION_LOST
        assert not adapter.connected

    @pytest.mark.asyncio
    async def test_close_after_disconnect_is_a_close(self, adapter, lib):
        updates = capture(adapter, CONNECTION_UPDATE)

        await adapter.disconnect()
        await lib_listener(lib, "connection.update")(lib_update(connection="close"))

        assert updates[0].connection == "close"
        assert updates[0].reason is DisconnectReason.NONE

    @pytest.mark.asyncio
    async def test_messages_normalized(self, adapter, lib):
        messages = capture(adapter, MESSAGE_RECEIVED)
        listener = lib_listener(lib, "message.decrypted")

        await listener({"id": "1", "chat_jid": CHAT, "sender_jid": CHAT, "text": ".ping"})
        await listener({"id": "2", "chat_jid": CHAT, "sender_jid": CHAT, "text": None})

        assert [m.text for m in messages] == [".ping"]

    @pytest.mark.asyncio
    async def test_creds_update_forwarded_and_self_id_learned(self, adapter, lib):
        received = capture(adapter, CREDENTIALS_UPDATED)
        creds = SimpleNamespace(me=SimpleNamespace(id="15557777777:1@s.whatsapp.net"))

        await lib_listener(lib, "creds.update")(creds)

        assert received == [creds]
        messages = capture(adapter, MESSAGE_RECEIVED)
        await lib_listener(lib, "message.decrypted")(
            {"chat_jid": CHAT, "sender_jid": "15557777777@s.whatsapp.net", "text": "x"}
        )
        assert messages[0].from_self is True

    @pytest.mark.asyncio
    async def test_listener_error_does_not_propagate(self, adapter, lib, caplog):
        async def broken(update):
            raise RuntimeError("listener bug")

        adapter.on(CONNECTION_UPDATE, broken)
        await lib_listener(lib, "connection.update")(lib_update(connection="open"))

        assert "listener bug" in caplog.text
