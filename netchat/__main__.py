#!/usr/bin/env python3
"""Command‑line entry point: ``netchat server [--port N]`` / ``netchat client ADDR``."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import dataclass
from typing import List, Optional

from .client import ChatClient
from .console import ConsoleInput
from .errors import TransportError
from .node import DEFAULT_TICK
from .protocol import DEFAULT_PORT
from .server import ChatServer
from .transport import Address
from .transport_tcp import TcpTransport
from .util import LOG, configure_logging


@dataclass(slots=True)
class AppOptions:
    """Everything the command line decides."""

    role: str                          # "server" | "client"
    port: int = DEFAULT_PORT
    server: Optional[Address] = None   # client only
    log_file: Optional[str] = "netchat.log"
    verbose: bool = False
    tick: float = DEFAULT_TICK


def _port(text: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port {text!r}") from None
    if not 0 < port <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port {port}")
    return port


def _server_address(text: str) -> Address:
    try:
        return Address.parse(text, DEFAULT_PORT)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid server address {text!r}: {exc}") from None


def _tick(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid interval {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("interval must be positive")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("netchat", description="Toy multi-client chat over a reliable transport")
    parser.add_argument("--log-file", default="netchat.log", help="rotating log file ('' disables it)")
    parser.add_argument("--verbose", action="store_true", help="log transport details too")
    parser.add_argument("--tick", type=_tick, default=DEFAULT_TICK, help="dispatch loop interval in seconds")

    roles = parser.add_subparsers(dest="role", required=True)

    server = roles.add_parser("server", help="host a chat room")
    server.add_argument("--port", type=_port, default=DEFAULT_PORT, help="port to listen on")

    client = roles.add_parser("client", help="join a chat room")
    client.add_argument("server", type=_server_address, help="server address, HOST[:PORT]")
    return parser


def read_app_options(argv: Optional[List[str]] = None) -> AppOptions:
    args = build_parser().parse_args(argv)
    return AppOptions(
        role=args.role,
        port=getattr(args, "port", DEFAULT_PORT),
        server=getattr(args, "server", None),
        log_file=args.log_file or None,
        verbose=args.verbose,
        tick=args.tick,
    )


def run(options: AppOptions) -> int:
    """Run one role until quit; returns the process exit status."""
    quit_event = threading.Event()
    try:
        with TcpTransport() as transport, ConsoleInput(quit_event) as console:
            if options.role == "server":
                ChatServer(transport, quit_event, console, options.tick).run(options.port)
            else:
                ChatClient(transport, quit_event, console, options.tick).run(options.server)
    except TransportError as exc:
        LOG.critical("%s", exc)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    options = read_app_options(argv)
    configure_logging(options.log_file, logging.DEBUG if options.verbose else logging.INFO)
    LOG.info("Starting chat %s", options.role)
    sys.exit(run(options))


if __name__ == "__main__":
    main()
