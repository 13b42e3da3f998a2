"""
Pytest configuration and shared fixtures for minibot tests.

Provides a FakeProtocolClient standing in for the WhatsApp library, a fake
session store, and wired dispatcher/supervisor/gateway instances.
"""
from pathlib import Path
from typing import Any, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from minibot.bot.dispatcher import CommandDispatcher
from minibot.bot.replies import RuntimeStats
from minibot.config import BotConfig, RestartPolicy, Settings
from minibot.whatsapp.client import (
    CONNECTION_UPDATE,
    CREDENTIALS_UPDATED,
    MESSAGE_RECEIVED,
    ConnectionUpdate,
    DisconnectReason,
    InboundMessage,
    ProtocolClient,
)
from minibot.whatsapp.supervisor import ConnectionSupervisor


# =============================================================================
# Fakes
# =============================================================================

class FakeProtocolClient(ProtocolClient):
    """In-memory ProtocolClient that records outbound calls."""

    def __init__(self, pairing_code: str = "ABCD1234"):
        super().__init__()
        self.sent: List[Tuple[str, str]] = []
        self.presence: List[Tuple[str, str]] = []
        self.pairing_requests: List[str] = []
        self.pairing_code = pairing_code
        self.pairing_error: Optional[Exception] = None
        self.connected = False
        self.disconnected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnected = True

    async def send_message(self, chat_id: str, text: str) -> None:
        self.sent.append((chat_id, text))

    async def send_presence(self, chat_id: str, state: str) -> None:
        self.presence.append((chat_id, state))

    async def request_pairing_code(self, phone_number: str) -> str:
        self.pairing_requests.append(phone_number)
        if self.pairing_error is not None:
            raise self.pairing_error
        return self.pairing_code

    # Test helpers: drive lifecycle events the way the library would

    async def emit_open(self) -> None:
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

    async def emit_qr(self, qr: str) -> None:
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(qr=qr))

    async def emit_close(self, reason: DisconnectReason = DisconnectReason.CONNECTION_LOST) -> None:
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(connection="close", reason=reason))

    async def emit_connecting(self) -> None:
        await self._emit(
            CONNECTION_UPDATE, ConnectionUpdate(connection="connecting", reason=DisconnectReason.RESTART_REQUIRED)
        )

    async def emit_creds(self, creds: Any = None) -> None:
        await self._emit(CREDENTIALS_UPDATED, creds)

    async def emit_message(self, message: InboundMessage) -> None:
        await self._emit(MESSAGE_RECEIVED, message)


class FakeSessionStore:
    """SessionStore double with awaitable save/clear mocks."""

    def __init__(self, path: Path):
        self.path = path
        self.state = None
        self.save = AsyncMock()
        self.clear = AsyncMock()

    @property
    def has_credentials(self) -> bool:
        return False


class Connector:
    """Connector callable that hands out a fresh FakeProtocolClient per start."""

    def __init__(self):
        self.clients: List[FakeProtocolClient] = []
        self.stores: List[FakeSessionStore] = []

    async def load_store(self, path: Path) -> FakeSessionStore:
        store = FakeSessionStore(path)
        self.stores.append(store)
        return store

    async def __call__(self, store: FakeSessionStore, settings: Settings) -> FakeProtocolClient:
        client = FakeProtocolClient()
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeProtocolClient:
        return self.clients[-1]


async def no_sleep(delay: float) -> None:
    return None


def make_message(text: str, chat_id: str = "15550001111@s.whatsapp.net", from_self: bool = False) -> InboundMessage:
    return InboundMessage(sender_id=chat_id, chat_id=chat_id, text=text, from_self=from_self)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def bot_config():
    """Default bot identity with prefix '.'."""
    return BotConfig()


@pytest.fixture
def settings(tmp_path, bot_config):
    """Settings with a temp session dir and a short restart budget."""
    return Settings(
        bot=bot_config,
        restart=RestartPolicy(initial_delay=0.0, max_delay=0.0, max_attempts=3),
        session_dir=str(tmp_path / "sessions"),
        pairing_timeout=0.5,
        connect_timeout=0,
    )


@pytest.fixture
def stats():
    """Fixed runtime stats so rendered text is deterministic."""
    return RuntimeStats(uptime_seconds=42, memory_mb=12.5)


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def fake_client():
    return FakeProtocolClient()


@pytest.fixture
def dispatcher(bot_config, fake_client, stats):
    """Dispatcher replying through fake_client."""
    return CommandDispatcher(bot_config, outbound=fake_client, started_at=0.0, stats_sampler=lambda _: stats)


@pytest.fixture
def connector():
    return Connector()


@pytest.fixture
def supervisor(settings, bot_config, connector, stats):
    """Supervisor wired to fake clients and a zero-delay sleep."""
    dispatcher = CommandDispatcher(bot_config, started_at=0.0, stats_sampler=lambda _: stats)
    return ConnectionSupervisor(
        settings,
        dispatcher,
        connector=connector,
        store_loader=connector.load_store,
        sleep=no_sleep,
    )
