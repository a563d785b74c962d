#!/usr/bin/env python3
"""Command‑line chat *client*.

* Connects to one server and prints whatever it sends
* Every console line except ``/quit`` is forwarded verbatim; the server does
  the parsing (``/nick <name>`` renames, anything else is chat)
* ``/quit`` closes the connection gracefully (linger mode)

Usage (after installing package locally):

    netchat client 203.0.113.22:27020
"""

from __future__ import annotations                # ↩ type hints forward refs OK

import sys
import threading
from typing import Optional, TextIO

from .console import ConsoleInput
from .node import DEFAULT_TICK, ChatNode
from .protocol import (
    CLIENT_GOODBYE, CONNECT_FAILED, HOST_FAREWELL, LOST_CONTACT,
    decode_payload, encode_text,
)
from .transport import (
    INVALID_HANDLE, Address, ConnectionState, StatusChange, Transport,
)
from .util import LOG


class ChatClient(ChatNode):
    """Single-connection chat client; can also be driven programmatically."""

    def __init__(
        self,
        transport: Transport,
        quit_event: threading.Event,
        console: Optional[ConsoleInput] = None,
        tick_interval: float = DEFAULT_TICK,
        output: Optional[TextIO] = None,
    ) -> None:
        super().__init__(transport, quit_event, console, tick_interval)
        self.output = output if output is not None else sys.stdout
        self.connection = INVALID_HANDLE
        self.server: Optional[Address] = None

    # ================================================================== main ===
    def connect(self, server: Address) -> int:
        """Start connecting; raises TransportError if that is impossible."""
        self.server = server
        LOG.info("Connecting to chat server at %s", server)
        self.connection = self.transport.connect(server, self.on_status_changed)
        return self.connection

    def run(self, server: Address) -> None:
        self.connect(server)
        try:
            self.run_loop()                       # Until /quit or the link dies
        except KeyboardInterrupt:
            LOG.info("Shutdown requested")
            self.quit_event.set()
            self.on_quit()

    # ---------------------------------------------------------------- inbound messages
    def poll_incoming_messages(self) -> None:
        while not self.quitting and self.connection != INVALID_HANDLE:
            msg = self.transport.receive_on_connection(self.connection)
            if msg is None:
                break
            # Just echo anything we get from the server
            self.output.write(decode_payload(msg.data) + "\n")
            self.output.flush()

    # ---------------------------------------------------------------- local console
    def on_quit(self) -> None:
        if self.connection == INVALID_HANDLE:
            return
        LOG.info("Disconnecting from chat server")
        # Linger so anything still queued reaches the server before the close.
        self.transport.close_connection(self.connection, 0, CLIENT_GOODBYE, linger=True)
        self.connection = INVALID_HANDLE

    def on_local_line(self, line: str) -> None:
        if self.connection == INVALID_HANDLE:
            return
        self.transport.send(self.connection, encode_text(line), reliable=True)

    # ---------------------------------------------------------------- connection state
    def on_status_changed(self, change: StatusChange) -> None:
        match change.state:
            case ConnectionState.CLOSED_BY_PEER | ConnectionState.PROBLEM_DETECTED_LOCALLY:
                self._on_closed(change)
            case ConnectionState.CONNECTED:
                LOG.info("Connected to server OK")
            case _:
                # NONE during teardown, CONNECTING right after connect(): nothing to do.
                pass

    def _on_closed(self, change: StatusChange) -> None:
        self.quit_event.set()

        if change.old_state is ConnectionState.CONNECTING:
            # Timeout, refusal or transport problem – we cannot tell them apart here.
            LOG.error(CONNECT_FAILED.format(debug=change.end_debug))
        elif change.state is ConnectionState.PROBLEM_DETECTED_LOCALLY:
            LOG.error(LOST_CONTACT.format(debug=change.end_debug))
        else:
            LOG.error(HOST_FAREWELL.format(debug=change.end_debug))

        # Already closed on the other end: no linger, nobody left to acknowledge.
        self.transport.close_connection(change.conn, 0, "", linger=False)
        self.connection = INVALID_HANDLE
