"""
Operator smoke check for the client layer.

Performs one GET against the API and/or keeps the socket open for a few
seconds, logging every lifecycle event and pushed message::

    python -m netlayer.probe --get /health --socket --seconds 10

Tokens can be supplied with ``--token`` (or ``NETLAYER_ACCESS_TOKEN``)
and are kept in memory only, valid for ``--token-ttl`` seconds.
``--metrics-port`` exposes the Prometheus metrics while the probe runs.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .config import HttpConfig, SocketConfig
from .errors import NetlayerError
from .models import Credential
from .runtime import ClientLayer
from .services.event_bus import CONNECT, DISCONNECT, ERROR, RECONNECT, RECONNECT_FAILED, STATE_CHANGE
from .telemetry import start_metrics_server

logger = logging.getLogger("netlayer.probe")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Smoke-test the API and socket endpoints.")
    parser.add_argument("--api-url", help="Base URL of the HTTP API (default: NETLAYER_API_URL).")
    parser.add_argument("--ws-url", help="Socket endpoint (default: NETLAYER_WS_URL).")
    parser.add_argument("--get", dest="get_path", help="Path to GET once, e.g. /health.")
    parser.add_argument("--socket", action="store_true", help="Connect the socket.")
    parser.add_argument("--seconds", type=float, default=5.0, help="How long to keep the socket open.")
    parser.add_argument("--subscribe", action="append", default=[], help="Channel to join (repeatable).")
    parser.add_argument("--token", default=os.environ.get("NETLAYER_ACCESS_TOKEN"), help="Access token.")
    parser.add_argument(
        "--token-ttl",
        type=float,
        default=3600.0,
        help="Seconds the supplied token is treated as valid (tokens without an expiry are never sent).",
    )
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port.")
    return parser


async def run(args: argparse.Namespace) -> int:
    layer = ClientLayer.create(
        http_config=HttpConfig.from_env(args.api_url),
        socket_config=SocketConfig.from_env(args.ws_url),
    )
    if args.token:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=args.token_ttl)
        layer.credentials.set(Credential(access_token=args.token, expires_at=expires_at))

    for event in (STATE_CHANGE, CONNECT, DISCONNECT, RECONNECT, RECONNECT_FAILED, ERROR):
        layer.event_bus.on(event, lambda data, event=event: logger.info("event %s: %s", event, data))

    status = 0
    try:
        if args.get_path:
            try:
                response = await layer.http.get(args.get_path)
                logger.info("GET %s -> %d %s", args.get_path, response.status, response.data)
            except NetlayerError as exc:
                logger.error("GET %s failed: %s", args.get_path, exc.to_dict())
                status = 1
        if args.socket:
            try:
                await layer.socket.connect()
                for channel in args.subscribe:
                    layer.socket.on_message(channel, lambda data: logger.info("message: %s", data))
                    await layer.socket.subscribe(channel)
                await asyncio.sleep(args.seconds)
            except NetlayerError as exc:
                logger.error("Socket probe failed: %s", exc.to_dict())
                status = 1
    finally:
        await layer.close()
    return status


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    if args.metrics_port is not None:
        start_metrics_server(args.metrics_port)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
