"""CLI entry point for Telehook.

Usage:
    python -m telehook [options]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
from typing import NoReturn

from pydantic import ValidationError

from telehook import __version__
from telehook.app import Relay
from telehook.config import Settings, clear_settings_cache, get_settings
from telehook.shutdown import GracefulShutdown, ShutdownTimeoutError

# Application info
APP_NAME = "Telehook"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="telehook",
        description="Relay webhook alerts to Telegram channels.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m telehook                      Run the relay
  python -m telehook --config-check       Validate config and exit
  python -m telehook --log-level DEBUG    Enable debug logging
  python -m telehook --port 8080          Listen on another port
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit without starting the relay",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override HTTP port (default: from settings)",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "aiohttp.access": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_config_summary(settings: Settings) -> None:
    """Print a summary of the configuration.

    Args:
        settings: Application settings.
    """
    summary = settings.redacted_summary()
    print("Configuration:")
    print(f"  Database: {summary['database_url']}")
    print(f"  Listen: {summary['listen']}")
    print(f"  Log Level: {summary['log_level']}")
    print(f"  Workers: {summary['queue_workers']}")
    print(f"  Queue Size: {summary['queue_size']}")
    print(f"  Dedup Window: {summary['dedup_window_seconds']}s")
    print(f"  Rate Limit: {summary['rate_limit']}/min per client")
    print(f"  Default Bot: {'enabled' if summary['telegram_enabled'] == 'True' else 'disabled'}")
    print()


def validate_config() -> Settings | None:
    """Validate and load configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        # Clear cache to force reload
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            msg = error["msg"]
            print(f"  {field}: {msg}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Print the validated configuration.

    Returns:
        Exit code (0 for success).
    """
    print("Configuration is valid!")
    print()
    print_config_summary(settings)
    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


async def run_relay(settings: Settings, shutdown_timeout: float = 30.0) -> int:
    """Run the relay until SIGTERM/SIGINT.

    Args:
        settings: Application settings.
        shutdown_timeout: Maximum time to wait for the queue to drain.

    Returns:
        Exit code.
    """
    logger = logging.getLogger(__name__)
    shutdown = GracefulShutdown(timeout=shutdown_timeout)

    try:
        async with shutdown:
            relay = Relay(settings)
            shutdown.register_cleanup(relay.stop)

            logger.info("Starting relay...")
            await relay.start()

            logger.info(
                "Relay listening on %s:%d. Press Ctrl+C to stop.", settings.host, settings.port
            )
            await shutdown.wait()

            logger.info("Shutdown signal received, stopping relay...")

        return EXIT_SUCCESS
    except ShutdownTimeoutError as e:
        logger.error("Graceful shutdown failed: %s", e)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Relay failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # Validate configuration first
    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    if args.port is not None:
        settings = settings.model_copy(update={"port": args.port})

    log_level = args.log_level or settings.log_level
    configure_logging(log_level)

    if args.config_check:
        sys.exit(run_config_check(settings))

    print_config_summary(settings)

    exit_code = asyncio.run(run_relay(settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
