"""
Minibot Exceptions
==================

Error types raised across the bot, supervisor and gateway.
"""


class MinibotError(Exception):
    """Base error for the minibot package."""
    pass


class ConfigError(MinibotError):
    """Raised when settings cannot be loaded or validated."""
    pass


class InvalidPrefixError(ConfigError):
    """Raised when a command prefix is empty."""
    pass


class ClientAlreadyRunningError(MinibotError):
    """Raised when a second protocol client would be started while one is live."""
    pass


class ClientNotConnectedError(MinibotError):
    """Raised when an outbound call is made with no live protocol client."""
    pass


class PairingError(MinibotError):
    """Raised when a pairing code cannot be obtained."""
    pass
