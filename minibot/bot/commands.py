"""
Chat Commands
=============

Closed set of chat commands and the prefix parser.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Command(Enum):
    """Every command the bot answers, plus UNRECOGNIZED for anything else."""
    MENU = "menu"
    PING = "ping"
    ALIVE = "alive"
    SETPREFIX = "setprefix"
    TYPING = "typing"
    RECORDING = "recording"
    STICKER = "sticker"
    HELP = "help"
    OWNER = "owner"
    INFO = "info"
    HI = "hi"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def lookup(cls, name: str) -> "Command":
        try:
            command = cls(name)
        except ValueError:
            return cls.UNRECOGNIZED
        return command


@dataclass
class ParsedCommand:
    """A prefixed message split into command and arguments."""
    command: Command
    raw_name: str
    args: List[str] = field(default_factory=list)


def parse_command(text: str, prefix: str) -> Optional[ParsedCommand]:
    """
    Split ``text`` into a command and its arguments.

    Returns None when the text does not start with ``prefix``. The command
    name is case-folded; arguments keep their case.
    """
    if not text or not prefix or not text.startswith(prefix):
        return None

    tokens = text[len(prefix):].split()
    if not tokens:
        return ParsedCommand(command=Command.UNRECOGNIZED, raw_name="")

    name = tokens[0].casefold()
    return ParsedCommand(command=Command.lookup(name), raw_name=name, args=tokens[1:])
