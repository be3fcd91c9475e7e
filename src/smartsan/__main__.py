"""Run the SmartSan core HTTP server.

Usage
-----
::

    export INTASEND_SECRET_KEY="ISSecretKey_test_..."
    export INTASEND_PUBLIC_KEY="ISPubKey_test_..."
    python -m smartsan --port 8080

Options::

    --host HOST          Bind address (default: SMARTSAN_HOST or 0.0.0.0)
    --port PORT          Bind port (default: SMARTSAN_PORT or 8080)
    --mqtt               Also ingest telemetry over MQTT
    --verbose / -v       Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from aiohttp import web

from smartsan.config import SmartSanConfig
from smartsan.exceptions import SmartSanConfigError
from smartsan.server import create_app
from smartsan.service import SmartSanService

_logger = logging.getLogger("smartsan")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="smartsan", description="SmartSan fleet core server.")
    parser.add_argument("--host", default=None, help="Bind address.")
    parser.add_argument("--port", type=int, default=None, help="Bind port.")
    parser.add_argument("--mqtt", action="store_true", help="Subscribe to device telemetry over MQTT.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


async def _serve(config: SmartSanConfig) -> None:
    async with SmartSanService(config) as service:
        runner = web.AppRunner(create_app(service))
        await runner.setup()
        site = web.TCPSite(runner, config.host, config.port)
        await site.start()
        _logger.info("Listening on http://%s:%d", config.host, config.port)
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, object] = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.mqtt:
        overrides["mqtt_enabled"] = True

    try:
        config = SmartSanConfig.from_env(**overrides)
    except SmartSanConfigError as exc:
        print(f"smartsan: {exc}", file=sys.stderr)
        return 2

    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
