"""
Bot Configuration
=================

Dataclass settings for the bot, loaded from an optional YAML file and
overridden by environment variables (``.env`` is honoured).

Priority (lowest to highest):
1. Built-in defaults
2. YAML file (``--config`` or ``MINIBOT_CONFIG``)
3. Environment variables
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError, InvalidPrefixError

logger = logging.getLogger(__name__)

DEFAULT_BOT_NAME = "TOXICYOBBY-MD"
DEFAULT_PREFIX = "."
DEFAULT_PORT = 3000
DEFAULT_SESSION_DIR = "./sessions"


@dataclass
class BotConfig:
    """
    Process-wide bot identity and command prefix.

    The prefix is the only mutable field and is changed through
    ``set_prefix`` so every writer goes through one place.
    """
    name: str = DEFAULT_BOT_NAME
    prefix: str = DEFAULT_PREFIX
    owner_name: str = "TOXICYOBBY"
    owner_contact: str = "wa.me/1234567890"
    version: str = "1.0.0"
    platform: str = "Render"
    library: str = "pyaileys"

    def __post_init__(self):
        if not self.prefix or not self.prefix.strip():
            raise InvalidPrefixError("Prefix must not be empty")

    def set_prefix(self, value: str) -> str:
        """Replace the command prefix. Returns the stored value."""
        value = (value or "").strip()
        if not value:
            raise InvalidPrefixError("Prefix must not be empty")
        if value != self.prefix:
            logger.info(f"Prefix changed: {self.prefix!r} -> {value!r}")
        self.prefix = value
        return self.prefix


@dataclass
class RestartPolicy:
    """Backoff for restarting the protocol client after a close."""
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    max_attempts: int = 10  # 0 = unlimited

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before restart number ``attempt`` (1-based)."""
        if attempt <= 1:
            return min(self.initial_delay, self.max_delay)
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def allows(self, attempt: int) -> bool:
        return self.max_attempts <= 0 or attempt <= self.max_attempts


@dataclass
class Settings:
    """
    Main configuration.

    Loaded by ``load_settings``.
    """
    bot: BotConfig = field(default_factory=BotConfig)
    restart: RestartPolicy = field(default_factory=RestartPolicy)

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    session_dir: str = DEFAULT_SESSION_DIR
    pairing_timeout: float = 30.0
    send_timeout: float = 15.0
    connect_timeout: float = 60.0  # 0 = no watchdog
    log_level: str = "INFO"
    browser: Tuple[str, str] = (DEFAULT_BOT_NAME, "Chrome")

    @property
    def session_path(self) -> Path:
        return Path(os.path.expanduser(self.session_dir))

    @classmethod
    def default(cls) -> "Settings":
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create settings from a (YAML-shaped) dictionary."""
        bot_data = data.get("bot", {}) or {}
        restart_data = data.get("restart", {}) or {}

        settings = cls(
            bot=BotConfig(**{k: v for k, v in bot_data.items() if k in BotConfig.__dataclass_fields__}),
            restart=RestartPolicy(
                **{k: v for k, v in restart_data.items() if k in RestartPolicy.__dataclass_fields__}
            ),
        )

        for key in ("host", "session_dir", "log_level"):
            if key in data:
                setattr(settings, key, str(data[key]))
        for key in ("pairing_timeout", "send_timeout", "connect_timeout"):
            if key in data:
                setattr(settings, key, _parse_seconds(key, data[key]))
        if "port" in data:
            settings.port = _parse_port(data["port"])
        if "browser" in data:
            browser = data["browser"]
            if not isinstance(browser, (list, tuple)) or len(browser) != 2:
                raise ConfigError("browser must be a pair: [name, client]")
            settings.browser = (str(browser[0]), str(browser[1]))

        return settings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bot": {
                "name": self.bot.name,
                "prefix": self.bot.prefix,
                "owner_name": self.bot.owner_name,
                "owner_contact": self.bot.owner_contact,
                "version": self.bot.version,
                "platform": self.bot.platform,
                "library": self.bot.library,
            },
            "restart": {
                "initial_delay": self.restart.initial_delay,
                "max_delay": self.restart.max_delay,
                "multiplier": self.restart.multiplier,
                "max_attempts": self.restart.max_attempts,
            },
            "host": self.host,
            "port": self.port,
            "session_dir": self.session_dir,
            "pairing_timeout": self.pairing_timeout,
            "send_timeout": self.send_timeout,
            "connect_timeout": self.connect_timeout,
            "log_level": self.log_level,
            "browser": list(self.browser),
        }


def _parse_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port: {value!r}")
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range: {port}")
    return port


def _parse_seconds(key: str, value: Any) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {key}: {value!r}")
    if seconds < 0:
        raise ConfigError(f"{key} must not be negative: {seconds}")
    return seconds


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"YAML parse error in {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Config file {path} must contain a mapping, ignoring it")
        return {}
    logger.info(f"Loaded config from: {path}")
    return data


def _apply_env(settings: Settings) -> Settings:
    env = os.environ

    if env.get("PORT"):
        settings.port = _parse_port(env["PORT"])
    if env.get("HOST"):
        settings.host = env["HOST"]
    if env.get("SESSION_DIR"):
        settings.session_dir = env["SESSION_DIR"]
    if env.get("LOG_LEVEL"):
        settings.log_level = env["LOG_LEVEL"].upper()
    if env.get("BOT_NAME"):
        settings.bot.name = env["BOT_NAME"]
    if env.get("BOT_PREFIX"):
        settings.bot.set_prefix(env["BOT_PREFIX"])
    if env.get("OWNER_NAME"):
        settings.bot.owner_name = env["OWNER_NAME"]
    if env.get("OWNER_CONTACT"):
        settings.bot.owner_contact = env["OWNER_CONTACT"]

    return settings


def load_settings(config_path: Optional[str] = None, use_dotenv: bool = True) -> Settings:
    """
    Load settings from defaults, an optional YAML file and the environment.

    Args:
        config_path: YAML file path (falls back to ``MINIBOT_CONFIG``)
        use_dotenv: Read a ``.env`` file into the environment first

    Returns:
        Settings instance
    """
    if use_dotenv:
        load_dotenv()

    config_path = config_path or os.getenv("MINIBOT_CONFIG")
    data: Dict[str, Any] = {}
    if config_path:
        path = Path(config_path).expanduser()
        if path.exists():
            data = _load_yaml(path)
        else:
            logger.warning(f"Config file not found: {path}")

    settings = Settings.from_dict(data) if data else Settings.default()
    return _apply_env(settings)
