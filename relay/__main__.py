"""
WSRelay Entry Point

This module provides the command-line interface for running the relay
standalone. It can be run directly with:

    python -m relay [options]

Received messages are logged; with --echo they are also sent back to the
peer as binary frames.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Set

import yaml

from relay.config import RelayConfig
from relay.events import HostEvent, RelayEvent
from relay.exceptions import RelayError
from relay.server import RelayServer
from relay.utils.codec import decode_payload


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for the relay.

    Args:
        debug: Enable debug level logging.
    """
    log_level = logging.DEBUG if debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    os.makedirs("logs", exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("logs/relay.log", encoding="utf-8"),
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="python -m relay",
        description="Single-peer WebSocket relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m relay
  python -m relay --port 9000 --echo
  python -m relay --config relay.yaml --debug
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: config file, WSRELAY_PORT, or 4040)",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=os.environ.get("WSRELAY_CONFIG"),
        help="YAML file with a 'relay' section",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--echo",
        action="store_true",
        help="Send every received message back to the peer",
    )

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> RelayConfig:
    """Build the config: YAML file, then environment, then --port."""
    config = RelayConfig.from_yaml(args.config) if args.config else RelayConfig()
    config = RelayConfig.from_env(config)
    if args.port is not None:
        config = RelayConfig.from_dict({**config.to_dict(), "port": args.port})
    return config


async def main_async(args: argparse.Namespace) -> int:
    """
    Main async entry point.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    logger = logging.getLogger(__name__)
    loop = asyncio.get_running_loop()

    config = load_config(args)
    server = RelayServer(config)
    echo_tasks: Set[asyncio.Task] = set()

    async def echo(data: str) -> None:
        try:
            await server.send(decode_payload(data))
        except RelayError as e:
            logger.warning(f"Echo failed: {e}")

    def on_event(event: HostEvent) -> None:
        if event.event is RelayEvent.MESSAGE:
            logger.info(f"{event.event.value}: {len(decode_payload(event.data))} bytes")
            if args.echo:
                task = loop.create_task(echo(event.data))
                echo_tasks.add(task)
                task.add_done_callback(echo_tasks.discard)
        else:
            logger.info(event.event.value)

    server.set_emitter(on_event)

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, initiating shutdown...")
        loop.call_soon_threadsafe(shutdown_event.set)

    if sys.platform != "win32":
        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)
    else:
        signal.signal(signal.SIGINT, signal_handler)

    try:
        endpoint = await server.start()

        logger.info("=" * 50)
        logger.info("WSRelay is running")
        logger.info(f"WebSocket URL: ws://{endpoint}")
        logger.info("Press Ctrl+C to stop")
        logger.info("=" * 50)
        print(endpoint, flush=True)

        await shutdown_event.wait()

    except RelayError as e:
        logger.error(f"Relay error: {e}")
        return 1
    finally:
        logger.info("Shutting down relay...")
        await server.stop()
        if echo_tasks:
            await asyncio.gather(*echo_tasks, return_exceptions=True)
        logger.info("Relay stopped")

    return 0


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    args = parse_args(argv)

    setup_logging(debug=args.debug)

    logger = logging.getLogger(__name__)
    logger.info("Starting WSRelay...")
    logger.info(f"Debug: {args.debug}")
    logger.info(f"Echo: {args.echo}")

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
