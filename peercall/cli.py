# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2025 PeerCall
#
# This file is part of PeerCall.
#
# PeerCall is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# PeerCall is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY
# or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.

"""Command line entry point: ``peercall relay`` and ``peercall call``."""

import argparse
import asyncio
import logging
import sys

from .errors import PeerCallError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | None) -> None:
    logging.basicConfig(level=(level or "INFO").upper(), format=LOG_FORMAT, force=True)


def run_relay(args: argparse.Namespace) -> int:
    import uvicorn

    from .relay.core.config import RelaySettings
    from .relay.main import create_app

    overrides = {
        key: value
        for key, value in (("host", args.host), ("port", args.port), ("log_level", args.log_level))
        if value is not None
    }
    relay_settings = RelaySettings(**overrides)
    setup_logging(relay_settings.log_level)

    uvicorn.run(
        create_app(relay_settings),
        host=relay_settings.host,
        port=relay_settings.port,
        log_level=relay_settings.log_level.lower(),
    )
    return 0


def run_client(args: argparse.Namespace) -> int:
    from .client.call import run_call
    from .client.config import ClientSettings

    setup_logging(args.log_level)

    client_settings = ClientSettings()
    if args.relay_url:
        client_settings.relay_url = args.relay_url

    try:
        asyncio.run(
            run_call(
                args.room,
                client_settings,
                create=args.create,
                on_status=lambda status: print(f"[{args.room}] {status}", flush=True),
            )
        )
    except KeyboardInterrupt:
        return 0
    except PeerCallError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="peercall", description="One-on-one WebRTC calls")
    subparsers = parser.add_subparsers(dest="command", required=True)

    relay = subparsers.add_parser("relay", help="Run the signaling relay")
    relay.add_argument("--host", default=None, help="Bind address (PEERCALL_RELAY_HOST)")
    relay.add_argument("--port", type=int, default=None, help="Bind port (PEERCALL_RELAY_PORT)")
    relay.add_argument("--log-level", default=None, help="Logging level (debug, info, warning, error)")
    relay.set_defaults(handler=run_relay)

    call = subparsers.add_parser("call", help="Join a room with the local camera and microphone")
    call.add_argument("room", help="Room id")
    call.add_argument("--create", action="store_true", help="Create the room instead of joining it")
    call.add_argument("--relay-url", default=None, help="Relay base URL (PEERCALL_RELAY_URL)")
    call.add_argument("--log-level", default=None, help="Logging level (debug, info, warning, error)")
    call.set_defaults(handler=run_client)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
