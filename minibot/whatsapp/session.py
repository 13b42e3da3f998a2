"""
Session Store
=============

Persists WhatsApp credentials across restarts using the multi-file
auth layout (``creds.json`` plus one file per key).
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"


class SessionStore:
    """
    Credential store for one WhatsApp session directory.

    Usage:
        store = await SessionStore.load("./sessions")
        client = await connect_pyaileys(store, settings)
        ...
        await store.save()
    """

    def __init__(self, path: Path, state: Any) -> None:
        self.path = path
        self.state = state

    @classmethod
    async def load(cls, path: Union[str, Path]) -> "SessionStore":
        """Load (or initialise) the auth state stored under ``path``."""
        from pyaileys.auth.store import MultiFileAuthState

        path = Path(path).expanduser()
        state = await MultiFileAuthState.load(str(path))
        store = cls(path, state)
        if store.has_credentials:
            logger.info(f"Restoring WhatsApp session from {path}")
        else:
            logger.info(f"No saved WhatsApp session in {path}, a QR scan will be needed")
        return store

    @property
    def has_credentials(self) -> bool:
        """True if saved credentials exist (no QR needed)."""
        return (self.path / CREDS_FILE).is_file()

    async def save(self, creds: Optional[Any] = None) -> None:
        """Persist current credentials. ``creds`` is accepted for listener use."""
        await self.state.save_creds()
        logger.debug(f"Saved WhatsApp credentials to {self.path}")

    async def clear(self) -> None:
        """Delete stored credentials and keys."""
        if self.path.exists():
            await asyncio.to_thread(shutil.rmtree, self.path, True)
        logger.warning(f"Cleared WhatsApp session at {self.path}")
