"""
Minibot Entry Point
===================

Runs the WhatsApp bot together with its control page.

Usage:
    python -m minibot
    python -m minibot --port 8080 --session-dir ./sessions
    python -m minibot --config minibot.yaml --debug
"""

import argparse
import logging
import sys


def setup_logging(level: str = "INFO", debug: bool = False):
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not debug:
        # transport chatter from the WhatsApp and browser sockets
        logging.getLogger("websockets").setLevel(logging.WARNING)


def build_gateway(settings):
    """Wire dispatcher, supervisor and gateway for ``settings``."""
    from .bot.dispatcher import CommandDispatcher
    from .gateway.server import ControlGateway
    from .whatsapp.supervisor import ConnectionSupervisor

    dispatcher = CommandDispatcher(settings.bot)
    supervisor = ConnectionSupervisor(settings, dispatcher)
    return ControlGateway(supervisor, settings)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the WhatsApp bot and its control page")
    parser.add_argument("--host", help="Bind address (overrides HOST)")
    parser.add_argument("--port", "-p", type=int, help="HTTP port (overrides PORT)")
    parser.add_argument("--config", "-c", help="YAML config file (overrides MINIBOT_CONFIG)")
    parser.add_argument("--session-dir", help="Credential directory (overrides SESSION_DIR)")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    from .config import load_settings
    from .exceptions import ConfigError

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        setup_logging(debug=args.debug)
        logging.getLogger(__name__).error(f"Invalid configuration: {e}")
        sys.exit(2)

    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.session_dir:
        settings.session_dir = args.session_dir
    if args.debug:
        settings.log_level = "DEBUG"

    setup_logging(settings.log_level, args.debug)
    logger = logging.getLogger(__name__)

    gateway = build_gateway(settings)

    print(
        f"""
╔══════════════════════════════════════════════════════════════╗
║  {settings.bot.name} - WhatsApp Bot
╠══════════════════════════════════════════════════════════════╣
║  Control page: http://{settings.host}:{settings.port}/
║  Sessions:     {settings.session_path}
║  Prefix:       {settings.bot.prefix}
╚══════════════════════════════════════════════════════════════╝
"""
    )

    try:
        gateway.run()
    except KeyboardInterrupt:
        logger.info("Bot stopped by user.")
        sys.exit(0)


if __name__ == "__main__":
    main()
