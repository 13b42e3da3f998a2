"""
Minibot
=======

Single-account WhatsApp command bot with a browser control page for
linking the account (QR code or pairing code).

Components:
- config.py - settings (YAML + environment)
- whatsapp/ - protocol client adapter, session store, connection supervisor
- bot/ - chat command parsing, replies and dispatch
- gateway/ - FastAPI control page and realtime WebSocket channel
"""

__version__ = "1.0.0"

from .config import BotConfig, RestartPolicy, Settings, load_settings
from .exceptions import (
    ClientAlreadyRunningError,
    ClientNotConnectedError,
    ConfigError,
    InvalidPrefixError,
    MinibotError,
    PairingError,
)

__all__ = [
    "__version__",
    "BotConfig",
    "RestartPolicy",
    "Settings",
    "load_settings",
    "MinibotError",
    "ConfigError",
    "InvalidPrefixError",
    "ClientAlreadyRunningError",
    "ClientNotConnectedError",
    "PairingError",
]
