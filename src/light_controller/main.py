"""Daemon entrypoint: ``light-controller``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import dotenv
import uvloop
from pydantic import ValidationError

from light_controller import const
from light_controller.const import LIGHT_VERSION, LOG_FORMATTER
from light_controller.correlation import correlation_context
from light_controller.exceptions import LightControlError
from light_controller.logging_abstraction import get_logger
from light_controller.server import LightServer
from light_controller.structs import ServerConfig

logger = get_logger(__name__)

# Keep aiomqtt/paho chatter at warning level on its own handler
_foreign_handler = logging.StreamHandler(sys.stderr)
_foreign_handler.setFormatter(LOG_FORMATTER)
mqtt_logger = logging.getLogger("aiomqtt")
mqtt_logger.setLevel(logging.WARNING)
mqtt_logger.propagate = False
mqtt_logger.addHandler(_foreign_handler)


def enable_debug_logging() -> None:
    """Drop every light_controller logger and its handlers to DEBUG."""
    for name, candidate in logging.root.manager.loggerDict.items():
        if name.startswith("light_controller") and isinstance(candidate, logging.Logger):
            candidate.setLevel(logging.DEBUG)
            for handler in candidate.handlers:
                handler.setLevel(logging.DEBUG)


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="light-controller",
        description="Bridge a local control socket to an MQTT light",
    )
    _ = parser.add_argument("--socket", dest="socket_path", default=None, help="Path of the local control socket")
    _ = parser.add_argument("--topic", default=None, help="Device state topic, deltas go to <topic>/set")
    _ = parser.add_argument("--host", dest="mqtt_host", default=None, help="MQTT broker host")
    _ = parser.add_argument("--port", dest="mqtt_port", type=int, default=None, help="MQTT broker port")
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to an environment file, read before any LIGHT_* setting", default=None, type=Path)
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {LIGHT_VERSION}")
    return parser.parse_args(argv)


def load_env_file(env_file: Path) -> None:
    """Load LIGHT_* variables from a dotenv file into ``os.environ``.

    Runtime switches in ``const`` are re-evaluated so LIGHT_DEBUG and
    LIGHT_PERF_* from the file apply to this run.
    """
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return
    if dotenv.load_dotenv(env_path, override=True):
        const.reload_env()
        logger.info("Environment variables loaded", extra={"source": str(env_path)})
    else:
        logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})


def build_config(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig.from_env(
        os.environ,
        socket_path=args.socket_path,
        topic=args.topic,
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
    )


async def run(config: ServerConfig) -> None:
    """Connect, run until the first loop stops, then clean up."""
    loop = asyncio.get_running_loop()
    current = asyncio.current_task()
    if current is not None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, current.cancel)
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    server = await LightServer.connect(config)
    async with server:
        _ = await server.start()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the light controller daemon."""
    with correlation_context():
        args = parse_cli(argv)
        if args.env:
            load_env_file(args.env)
        if args.debug or const.LIGHT_DEBUG:
            enable_debug_logging()
            logger.info("Debug logging enabled")

        try:
            config = build_config(args)
        except ValidationError as e:
            logger.error("Invalid configuration: %s", e)
            return 2

        logger.info(
            "Starting light controller",
            extra={"version": LIGHT_VERSION, "topic": config.topic, "socket": config.socket_path},
        )
        try:
            uvloop.run(run(config))
        except asyncio.CancelledError:
            logger.info("Light controller cancelled, shutting down...")
            return 0
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
            return 0
        except LightControlError as e:
            logger.error(
                "Server crashed: %s",
                e,
                extra={
                    "error_type": type(e).__name__,
                    "loop": e.loop or "startup",
                    "cause": repr(e.__cause__) if e.__cause__ else None,
                },
            )
            return 1
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
            return 1
        return 0


if __name__ == "__main__":
    sys.exit(main())
