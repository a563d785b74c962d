"""
pytest configuration and fixtures.
"""

import random
import threading
import time
from typing import Callable, List, Tuple

import pytest

from netchat.protocol import DEFAULT_PORT
from netchat.server import ChatServer
from netchat.transport import Address, StatusChange
from netchat.transport_memory import MemoryNetwork, MemoryTransport


class RecordingTransport(MemoryTransport):
    """Memory transport that remembers teardown calls, in order."""

    def __init__(self, network=None):
        super().__init__(network)
        self.calls: List[Tuple] = []
        self.names: List[Tuple[int, str]] = []

    def close_connection(self, conn, reason=0, debug="", linger=False):
        self.calls.append(("close_connection", conn, reason, debug, linger))
        super().close_connection(conn, reason, debug, linger)

    def close_listener(self, listener):
        self.calls.append(("close_listener", listener))
        super().close_listener(listener)

    def destroy_poll_group(self, group):
        self.calls.append(("destroy_poll_group", group))
        super().destroy_poll_group(group)

    def set_connection_name(self, conn, name):
        self.names.append((conn, name))
        super().set_connection_name(conn, name)

    def closes(self) -> List[Tuple]:
        return [c for c in self.calls if c[0] == "close_connection"]


class Peer:
    """A bare client endpoint on its own memory transport."""

    def __init__(self, network: MemoryNetwork, port: int = DEFAULT_PORT):
        self.transport = RecordingTransport(network)
        self.events: List[StatusChange] = []
        self.conn = self.transport.connect(Address("localhost", port), self.events.append)
        self.nick = ""
        self.server_conn = 0

    def pump(self) -> None:
        self.transport.run_callbacks()

    def received(self) -> List[str]:
        out = []
        while (msg := self.transport.receive_on_connection(self.conn)) is not None:
            out.append(msg.data.decode("utf-8"))
        return out

    def say(self, text: str) -> None:
        self.transport.send(self.conn, text.encode("utf-8"))

    def leave(self, debug: str = "") -> None:
        self.transport.close_connection(self.conn, 0, debug, linger=True)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, step: Callable[[], None] = None) -> bool:
    """Poll ``predicate`` (running ``step`` in between) until true or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if step is not None:
            step()
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def network() -> MemoryNetwork:
    return MemoryNetwork()


@pytest.fixture
def quit_event() -> threading.Event:
    return threading.Event()


@pytest.fixture
def server_transport(network) -> RecordingTransport:
    return RecordingTransport(network)


@pytest.fixture
def server(server_transport, quit_event):
    """A started chat server with a seeded nickname generator."""
    srv = ChatServer(server_transport, quit_event, rng=random.Random(1234))
    srv.start(DEFAULT_PORT)
    yield srv
    srv.shutdown()


@pytest.fixture
def join(network, server) -> Callable[[], Peer]:
    """Connect a new peer and let the server accept it."""

    def _join() -> Peer:
        peer = Peer(network)
        server.tick()
        peer.pump()
        session = list(server.clients)[-1]
        peer.server_conn = session.conn
        peer.nick = session.nickname
        return peer

    return _join
