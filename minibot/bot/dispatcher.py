"""
Command Dispatcher
==================

Turns prefixed chat messages into exactly one reply (or one presence
update followed by one reply).
"""

import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from ..config import BotConfig
from ..exceptions import InvalidPrefixError
from ..whatsapp.client import InboundMessage
from . import replies
from .commands import Command, ParsedCommand, parse_command

logger = logging.getLogger(__name__)

Handler = Callable[[str, List[str]], Awaitable[None]]


class Outbound(Protocol):
    """Where replies go. The ConnectionSupervisor implements this."""

    async def send_message(self, chat_id: str, text: str) -> None:
        ...

    async def send_presence(self, chat_id: str, state: str) -> None:
        ...


class CommandDispatcher:
    """
    Dispatches chat commands.

    Unknown commands and text without the prefix are ignored. Handler
    errors are logged and never reach the caller.
    """

    def __init__(
        self,
        bot: BotConfig,
        outbound: Optional[Outbound] = None,
        started_at: Optional[float] = None,
        stats_sampler: Callable[[float], replies.RuntimeStats] = replies.sample_runtime_stats,
    ):
        self.bot = bot
        self.outbound = outbound
        self.started_at = started_at if started_at is not None else time.time()
        self._sample_stats = stats_sampler

        self._handlers: Dict[Command, Handler] = {
            Command.MENU: self._menu,
            Command.PING: self._ping,
            Command.ALIVE: self._alive,
            Command.SETPREFIX: self._setprefix,
            Command.TYPING: self._typing,
            Command.RECORDING: self._recording,
            Command.STICKER: self._sticker,
            Command.HELP: self._help,
            Command.OWNER: self._owner,
            Command.INFO: self._info,
            Command.HI: self._hi,
            Command.UNRECOGNIZED: self._ignore,
        }
        missing = set(Command) - set(self._handlers)
        assert not missing, f"commands without handler: {sorted(c.value for c in missing)}"

    def bind(self, outbound: Outbound) -> None:
        """Attach the reply sink."""
        self.outbound = outbound

    async def handle(self, message: InboundMessage) -> Optional[Command]:
        """
        Handle one inbound message.

        Returns the command that ran, or None if the message was ignored.
        """
        if message.from_self or not message.text:
            return None

        parsed: Optional[ParsedCommand] = parse_command(message.text, self.bot.prefix)
        if parsed is None or parsed.command is Command.UNRECOGNIZED:
            if parsed is not None:
                logger.debug(f"Ignoring unknown command {parsed.raw_name!r} from {message.sender_id}")
            return None

        logger.info(
            f"[{message.chat_id}] {message.message_id or '-'} {parsed.command.value} {' '.join(parsed.args)}".rstrip()
        )
        try:
            await self._handlers[parsed.command](message.chat_id, parsed.args)
        except Exception as e:
            logger.error(f"Command {parsed.command.value} failed: {e}", exc_info=True)
        return parsed.command

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _reply(self, chat_id: str, text: str) -> None:
        if self.outbound is None:
            raise RuntimeError("Dispatcher has no outbound client bound")
        await self.outbound.send_message(chat_id, text)

    async def _ignore(self, chat_id: str, args: List[str]) -> None:
        return None

    async def _menu(self, chat_id: str, args: List[str]) -> None:
        await self._reply(chat_id, replies.render_menu(self.bot))

    async def _ping(self, chat_id: str, args: List[str]) -> None:
        await self._reply(chat_id, replies.PONG)

    async def _alive(self, chat_id: str, args: List[str]) -> None:
        await self._reply(chat_id, replies.render_alive(self.bot))

    async def _setprefix(self, chat_id: str, args: List[str]) -> None:
        if not args:
            await self._reply(chat_id, replies.render_prefix_usage(self.bot))
            return
        try:
            self.bot.set_prefix(args[0])
        except InvalidPrefixError:
            await self._reply(chat_id, replies.render_prefix_usage(self.bot))
            return
        await self._reply(chat_id, replies.render_prefix_changed(self.bot))

    async def _typing(self, chat_id: str, args: List[str]) -> None:
        await self.outbound.send_presence(chat_id, "composing")
        await self._reply(chat_id, replies.TYPING_ON)

    async def _recording(self, chat_id: str, args: List[str]) -> None:
        await self.outbound.send_presence(chat_id, "recording")
        await self._reply(chat_id, replies.RECORDING_ON)

    async def _sticker(self, chat_id: str, args: List[str]) -> None:
        await self._reply(chat_id, replies.render_sticker_hint(self.bot))

    async def _help(self, chat_id: str, args: List[str]) -> None:
        await self._reply(chat_id, replies.render_help(self.bot))

    async def _owner(self, chat_id: str, args: List[str]) -> None:
        await self._reply(chat_id, replies.render_owner(self.bot))

    async def _info(self, chat_id: str, args: List[str]) -> None:
        stats = self._sample_stats(self.started_at)
        await self._reply(chat_id, replies.render_info(self.bot, stats))

    async def _hi(self, chat_id: str, args: List[str]) -> None:
        await self._reply(chat_id, replies.render_greeting(self.bot))
