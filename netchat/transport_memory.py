"""In-process transport: connections between :class:`MemoryTransport` objects.

Every transport attached to the same :class:`MemoryNetwork` can reach the
listeners of the others. Delivery is immediate and lossless; state changes are
queued exactly as a network backend would queue them, so the chat core cannot
tell the difference. Used by the test-suite and handy for demos.
"""

from __future__ import annotations

import itertools
from typing import Dict, List, Optional, Tuple

from .transport import (
    Address,
    ConnectionState,
    StatusCallback,
    Transport,
    TransportError,
)
from .util import LOG

__all__ = ["MemoryNetwork", "MemoryTransport"]

# (transport, handle) of the other end of a connection
_Endpoint = Tuple["MemoryTransport", int]


class MemoryNetwork:
    """Port ➜ listener directory shared by a set of memory transports."""

    def __init__(self) -> None:
        self._listeners: Dict[int, _Endpoint] = {}
        self._ephemeral = itertools.count(49152)

    def bind(self, port: int, endpoint: _Endpoint) -> int:
        if port == 0:
            port = next(p for p in self._ephemeral if p not in self._listeners)
        if port in self._listeners:
            raise TransportError(f"Failed to listen on port {port}")
        self._listeners[port] = endpoint
        return port

    def unbind(self, port: int) -> None:
        self._listeners.pop(port, None)

    def lookup(self, port: int) -> Optional[_Endpoint]:
        return self._listeners.get(port)


class MemoryTransport(Transport):
    """Loopback backend; pair several of them through one :class:`MemoryNetwork`."""

    def __init__(self, network: Optional[MemoryNetwork] = None) -> None:
        super().__init__()
        self.network = network or MemoryNetwork()
        self._listeners: Dict[int, Tuple[Address, StatusCallback]] = {}
        self._peers: Dict[int, _Endpoint] = {}        # conn ➜ other end
        self._incoming: set[int] = set()              # conns created by a listener
        self._pending: Dict[int, List[bytes]] = {}    # sent while still connecting

    # ---------------------------------------------------------------- listening
    def create_listener(self, address: Address, on_status_changed: StatusCallback) -> int:
        listener = next(self._handles)
        port = self.network.bind(address.port, (self, listener))
        self._listeners[listener] = (Address(address.host, port), on_status_changed)
        return listener

    def close_listener(self, listener: int) -> None:
        entry = self._listeners.pop(listener, None)
        if entry is not None:
            self.network.unbind(entry[0].port)

    def listen_address(self, listener: int) -> Address:
        try:
            return self._listeners[listener][0]
        except KeyError:
            raise TransportError(f"invalid listener handle {listener}") from None

    # ---------------------------------------------------------------- connecting
    def connect(self, address: Address, on_status_changed: StatusCallback) -> int:
        link = self._new_link(on_status_changed, f"mem://{address}")
        self._set_state(link, ConnectionState.CONNECTING)

        target = self.network.lookup(address.port)
        if target is None:
            self._set_state(link, ConnectionState.PROBLEM_DETECTED_LOCALLY,
                            debug=f"No listener at {address}")
            return link.handle

        server, listener = target
        peer = server._inbound(listener, (self, link.handle))
        self._peers[link.handle] = (server, peer)
        return link.handle

    def _inbound(self, listener: int, remote: _Endpoint) -> int:
        """A remote transport connected to one of our listeners."""
        address, callback = self._listeners[listener]
        link = self._new_link(callback, f"mem://{address}#{remote[1]}")
        self._incoming.add(link.handle)
        self._peers[link.handle] = remote
        self._set_state(link, ConnectionState.CONNECTING)
        return link.handle

    def accept(self, conn: int) -> bool:
        link = self._links.get(conn)
        if link is None or conn not in self._incoming or link.state is not ConnectionState.CONNECTING:
            return False
        remote, remote_conn = self._peers[conn]
        self._set_state(link, ConnectionState.CONNECTED)
        remote._remote_accepted(remote_conn)
        return True

    def _remote_accepted(self, conn: int) -> None:
        link = self._links.get(conn)
        if link is None or link.state is not ConnectionState.CONNECTING:
            return
        self._set_state(link, ConnectionState.CONNECTED)
        for data in self._pending.pop(conn, []):
            self.send(conn, data)

    # ---------------------------------------------------------------- data
    def send(self, conn: int, data: bytes, reliable: bool = True) -> bool:
        link = self._links.get(conn)
        if link is None:
            return False
        if link.state is ConnectionState.CONNECTING:
            if not reliable:
                return False
            self._pending.setdefault(conn, []).append(bytes(data))
            return True
        if link.state is not ConnectionState.CONNECTED:
            return False
        remote, remote_conn = self._peers[conn]
        return remote._receive(remote_conn, bytes(data))

    def _receive(self, conn: int, data: bytes) -> bool:
        link = self._links.get(conn)
        if link is None or link.state.is_closed:
            return False
        self._deliver(link, data)
        return True

    # ---------------------------------------------------------------- closing
    def close_connection(self, conn: int, reason: int = 0, debug: str = "", linger: bool = False) -> None:
        link = self._drop_link(conn)
        if link is None:
            return
        self._incoming.discard(conn)
        self._pending.pop(conn, None)
        remote = self._peers.pop(conn, None)
        if remote is not None and not link.state.is_closed:
            remote[0]._remote_closed(remote[1], reason, debug)

    def _remote_closed(self, conn: int, reason: int, debug: str) -> None:
        link = self._links.get(conn)
        self._peers.pop(conn, None)
        if link is not None and not link.state.is_closed:
            self._set_state(link, ConnectionState.CLOSED_BY_PEER, reason, debug)

    def problem_detected(self, conn: int, debug: str) -> None:
        """Simulate a broken link: both ends report a local problem."""
        link = self._links.get(conn)
        if link is None or link.state.is_closed:
            return
        remote = self._peers.pop(conn, None)
        self._set_state(link, ConnectionState.PROBLEM_DETECTED_LOCALLY, debug=debug)
        if remote is not None:
            remote[0]._remote_problem(remote[1], debug)

    def _remote_problem(self, conn: int, debug: str) -> None:
        link = self._links.get(conn)
        self._peers.pop(conn, None)
        if link is not None and not link.state.is_closed:
            self._set_state(link, ConnectionState.PROBLEM_DETECTED_LOCALLY, debug=debug)

    def shutdown(self, grace: float = 0.5) -> None:
        for conn in list(self._links):
            self.close_connection(conn)
        for listener in list(self._listeners):
            self.close_listener(listener)
        self._groups.clear()
        self._events.clear()
        LOG.debug("Memory transport shut down")
