"""
WhatsApp Connection
===================

Personal WhatsApp account linked via QR code or pairing code.

Components:
- client.py - ProtocolClient contract and the pyaileys-backed implementation
- session.py - on-disk credential store
- supervisor.py - single live client, restart policy, pairing
"""

from .client import ConnectionUpdate, DisconnectReason, InboundMessage, ProtocolClient, PyaileysClient
from .session import SessionStore
from .supervisor import ConnectionState, ConnectionSupervisor, PairingRecord

__all__ = [
    "ConnectionUpdate",
    "DisconnectReason",
    "InboundMessage",
    "ProtocolClient",
    "PyaileysClient",
    "SessionStore",
    "ConnectionState",
    "ConnectionSupervisor",
    "PairingRecord",
]
