#!/usr/bin/env python3
"""Chat server managing:

* Connection acceptance + random placeholder nicknames
* ``/nick`` renames and broadcast of ordinary chat text
* Join / departure announcements
* Graceful shutdown on the local ``/quit`` command
* No persistence – everything lives in RAM until the process exits.
"""

from __future__ import annotations

import random
import threading
from typing import Optional

from .console import ConsoleInput
from .errors import InvariantViolation
from .node import DEFAULT_TICK, ChatNode
from .protocol import (
    ALONE, CHAT_LINE, JOINED, RENAME_ACK, RENAMED, SERVER_GOODBYE,
    SERVER_ONLY_QUIT, SERVER_SHUTDOWN, WELCOME, departure_notice,
    encode_text, generate_nickname, parse_payload,
)
from .registry import ClientRegistry
from .transport import (
    INVALID_HANDLE, Address, ConnectionState, StatusChange, Transport,
)
from .util import LOG, get_local_ip


class ChatServer(ChatNode):
    """Accepts clients on one listener and relays their chat through a poll group."""

    def __init__(
        self,
        transport: Transport,
        quit_event: threading.Event,
        console: Optional[ConsoleInput] = None,
        tick_interval: float = DEFAULT_TICK,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(transport, quit_event, console, tick_interval)
        self.clients = ClientRegistry()
        self.rng = rng or random.Random()

        self.listener = INVALID_HANDLE
        self.poll_group = INVALID_HANDLE

    # ================================================================= main ===
    def start(self, port: int, host: str = "") -> Address:
        """Listen and create the poll group; raises TransportError on failure."""
        self.listener = self.transport.create_listener(Address(host, port), self.on_status_changed)
        self.poll_group = self.transport.create_poll_group()
        address = self.transport.listen_address(self.listener)
        LOG.info("Server listening on port %d (this host: %s)", address.port, get_local_ip())
        return address

    def run(self, port: int, host: str = "") -> None:
        self.start(port, host)
        try:
            self.run_loop()                       # Until /quit
        except KeyboardInterrupt:
            LOG.info("Shutdown requested")
            self.quit_event.set()
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Say goodbye to every client, then release listener + poll group."""
        if self.listener == INVALID_HANDLE and self.poll_group == INVALID_HANDLE:
            return

        LOG.info("Closing connections...")
        for session in self.clients:
            # The close reason is meant for diagnostics, so the farewell the
            # user sees travels as a normal message.
            self.send_to_client(session.conn, SERVER_SHUTDOWN)
            self.transport.close_connection(session.conn, 0, SERVER_GOODBYE, linger=True)
        self.clients.clear()

        self.transport.close_listener(self.listener)
        self.listener = INVALID_HANDLE
        self.transport.destroy_poll_group(self.poll_group)
        self.poll_group = INVALID_HANDLE

    # ---------------------------------------------------------------- sending
    def send_to_client(self, conn: int, text: str) -> None:
        self.transport.send(conn, encode_text(text), reliable=True)

    def send_to_all(self, text: str, except_conn: int = INVALID_HANDLE) -> None:
        """Send to every client except the optional excluded one."""
        for session in self.clients:
            if session.conn != except_conn:
                self.send_to_client(session.conn, text)

    def set_client_nick(self, conn: int, nick: str) -> None:
        self.clients.rename(conn, nick)
        # Also name the transport connection; it shows up in transport logs.
        self.transport.set_connection_name(conn, nick)

    # ---------------------------------------------------------------- inbound messages
    def poll_incoming_messages(self) -> None:
        while not self.quitting:
            msg = self.transport.receive_on_poll_group(self.poll_group)
            if msg is None:
                break
            self.handle_message(msg.conn, msg.data)

    def handle_message(self, conn: int, data: bytes) -> None:
        """Run one client payload through the command protocol."""
        client = self.clients.get(conn)
        if client is None:
            raise InvariantViolation(f"message from unregistered connection {conn}")

        cmd = parse_payload(data)
        if cmd.is_rename:
            self.send_to_all(RENAMED.format(old=client.nickname, new=cmd.nick), except_conn=conn)
            self.send_to_client(conn, RENAME_ACK.format(new=cmd.nick))
            LOG.info("%s is now known as %r", client.nickname, cmd.nick)
            self.set_client_nick(conn, cmd.nick)
            return

        LOG.info("<%s> %s", client.nickname, cmd.text)
        self.send_to_all(CHAT_LINE.format(nick=client.nickname, text=cmd.text), except_conn=conn)

    # ---------------------------------------------------------------- local console
    def on_quit(self) -> None:
        LOG.info("Shutting down server")

    def on_local_line(self, line: str) -> None:
        LOG.info(SERVER_ONLY_QUIT)

    # ---------------------------------------------------------------- connection state
    def on_status_changed(self, change: StatusChange) -> None:
        match change.state:
            case ConnectionState.CONNECTING:
                self._on_connecting(change)
            case ConnectionState.CLOSED_BY_PEER | ConnectionState.PROBLEM_DETECTED_LOCALLY:
                self._on_closed(change)
            case _:
                # NONE shows up while connections are torn down; CONNECTED
                # follows our own accept() and is not news to us.
                pass

    def _on_connecting(self, change: StatusChange) -> None:
        conn = change.conn
        if conn in self.clients:
            raise InvariantViolation(f"connection {conn} is connecting twice")

        LOG.info("Connection request from %s", change.description)

        # The peer may already have given up; then accept() fails.
        if not self.transport.accept(conn):
            self.transport.close_connection(conn, 0, "", linger=False)
            LOG.warning("Can't accept connection from %s (it was already closed?)", change.description)
            return

        if not self.transport.set_poll_group(conn, self.poll_group):
            self.transport.close_connection(conn, 0, "", linger=False)
            LOG.warning("Failed to set poll group for %s", change.description)
            return

        nick = generate_nickname(self.rng)

        self.send_to_client(conn, WELCOME.format(nick=nick))
        if not self.clients.count:
            self.send_to_client(conn, ALONE)
        else:
            for other in self.clients:
                self.send_to_client(conn, other.nickname)

        self.send_to_all(JOINED.format(nick=nick))   # Newcomer is not registered yet

        self.clients.add(conn, nick)
        self.transport.set_connection_name(conn, nick)

    def _on_closed(self, change: StatusChange) -> None:
        conn = change.conn
        problem = change.state is ConnectionState.PROBLEM_DETECTED_LOCALLY

        if change.old_state is ConnectionState.CONNECTED:
            # Only this path removes clients (besides shutdown), and events
            # for one connection arrive in order, so the client must exist.
            client = self.clients.remove(conn)
            if client is None:
                raise InvariantViolation(f"connection {conn} closed but was never registered")

            LOG.info(
                "Connection %s %s, reason %d: %s",
                change.description,
                "problem detected locally" if problem else "closed by peer",
                change.end_reason,
                change.end_debug,
            )
            self.send_to_all(departure_notice(client.nickname, change.end_debug, problem))
        elif change.old_state is not ConnectionState.CONNECTING:
            raise InvariantViolation(
                f"connection {conn} closed from unexpected state {change.old_state.value}"
            )

        # Closed in the network sense but not yet destroyed. The other end is
        # gone, so lingering would wait for an acknowledgement that never comes.
        self.transport.close_connection(conn, 0, "", linger=False)
