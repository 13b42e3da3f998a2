"""Chat commands: parsing, reply text and dispatch."""

from .commands import Command, ParsedCommand, parse_command
from .dispatcher import CommandDispatcher

__all__ = ["Command", "ParsedCommand", "parse_command", "CommandDispatcher"]
