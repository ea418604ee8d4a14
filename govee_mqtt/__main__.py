"""Command line entry point: ``python -m govee_mqtt --config bridge.yaml``."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from . import __version__
from .bridge import GoveeBridge
from .config import BridgeConfig, load_config
from .errors import ConfigError

_LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="govee-mqtt",
        description="Expose Govee devices to Home Assistant over MQTT.",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="YAML configuration file (GOVEE_* environment variables override it)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="enable debug logging"
    )
    parser.add_argument("--version", action="version", version=__version__)
    return parser.parse_args(argv)


async def _run(config: BridgeConfig) -> None:
    bridge = GoveeBridge(config)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await bridge.async_start()
    try:
        await stop.wait()
    finally:
        _LOGGER.info("Shutting down")
        await bridge.async_stop()


def main(argv: list[str] | None = None) -> int:
    """Run the bridge until interrupted; return the process exit code."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args.config)
    except ConfigError as err:
        _LOGGER.error("%s", err)
        return 2
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_run(config))
    return 0


if __name__ == "__main__":
    sys.exit(main())
