"""
Reply Builder
=============

Canned chat replies. Every function here is pure: same BotConfig and
RuntimeStats in, same text out.
"""

import os
import time
from dataclasses import dataclass

import psutil

from ..config import BotConfig

PONG = "Pong! 🏓"
TYPING_ON = "Typing indicator activated!"
RECORDING_ON = "Recording indicator activated!"


@dataclass(frozen=True)
class RuntimeStats:
    """Process readings sampled when a reply is built."""
    uptime_seconds: int
    memory_mb: float


def sample_runtime_stats(started_at: float) -> RuntimeStats:
    """Sample uptime (since ``started_at``, a ``time.time()`` value) and RSS."""
    rss = psutil.Process(os.getpid()).memory_info().rss
    return RuntimeStats(
        uptime_seconds=max(0, int(time.time() - started_at)),
        memory_mb=rss / 1024 / 1024,
    )


def _check(bot: BotConfig) -> None:
    assert bot.name, "bot name must be set"
    assert bot.prefix, "prefix must be set"


def render_greeting(bot: BotConfig) -> str:
    return f"Hello 👋 {bot.name} bot is online!"


def render_alive(bot: BotConfig) -> str:
    return f"{bot.name} is alive and running! 🚀"


def render_prefix_changed(bot: BotConfig) -> str:
    return f"Prefix changed to: {bot.prefix}"


def render_prefix_usage(bot: BotConfig) -> str:
    return f"Please provide a prefix. Example: {bot.prefix}setprefix !"


def render_sticker_hint(bot: BotConfig) -> str:
    return f"Reply to an image with {bot.prefix}sticker to create a sticker!"


def render_owner(bot: BotConfig) -> str:
    return f"Bot Owner: {bot.owner_name}\nContact: {bot.owner_contact}"


def render_menu(bot: BotConfig) -> str:
    """Command menu."""
    _check(bot)
    p = bot.prefix
    return f"""
╭━━━❰ *{bot.name}* ❱━━━╮
┃
┃ 📌 *MAIN COMMANDS*
┃ • {p}menu - Show this menu
┃ • {p}ping - Check bot response
┃ • {p}alive - Bot status
┃ • {p}info - Bot information
┃ • {p}owner - Contact owner
┃ • {p}help - How to use the bot
┃
┃ ⚙️ *SETTINGS*
┃ • {p}setprefix [char] - Change prefix
┃ • {p}typing - Fake typing
┃ • {p}recording - Fake recording
┃
┃ 🎮 *FUN*
┃ • {p}hi - Say hello
┃ • {p}sticker - Create sticker
┃
╰━━━━━━━━━━━━━━━╯
""".strip()


def render_help(bot: BotConfig) -> str:
    """Getting-started help."""
    _check(bot)
    p = bot.prefix
    return f"""
*{bot.name} HELP*

📚 *Getting Started*
1. Connect the bot using QR code or pairing code
2. Send {p}menu to see all commands
3. Use commands with your set prefix

🔧 *Configuration*
- Change prefix: {p}setprefix [character]
- Check status: {p}alive

💡 *Tips*
- Reply to images with {p}sticker
- Report issues to the owner

Version: {bot.version}
""".strip()


def render_info(bot: BotConfig, stats: RuntimeStats) -> str:
    """Bot information card with uptime and memory."""
    _check(bot)
    assert stats.uptime_seconds >= 0, "uptime must not be negative"
    return f"""
╭─「 *{bot.name}* 」
│ *Name:* {bot.name}
│ *Version:* {bot.version}
│ *Library:* {bot.library}
│ *Platform:* {bot.platform}
│ *Uptime:* {stats.uptime_seconds}s
│ *Memory:* {stats.memory_mb:.2f} MB
╰──────────────
""".strip()
