#!/usr/bin/env python3
"""Reliable-message transport abstraction consumed by the chat core.

The chat server/client only ever talk to a :class:`Transport`:

* connections are opaque integer handles (``INVALID_HANDLE`` == 0)
* messages are exact-length byte strings, delivered reliably and in order
* state changes are queued and handed to the callback registered with the
  listener or ``connect()`` call when the owner calls :meth:`run_callbacks`

Concrete backends live in :mod:`netchat.transport_tcp` and
:mod:`netchat.transport_memory`. This module only holds the shared
bookkeeping (handles, event queue, poll groups, receive queues).
"""

from __future__ import annotations

import abc
import enum
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

from .errors import TransportError
from .util import LOG

__all__ = [
    "INVALID_HANDLE",
    "Address",
    "ConnectionState",
    "Message",
    "StatusChange",
    "StatusCallback",
    "Transport",
    "TransportError",
]

INVALID_HANDLE = 0


# ---------------------------------------------------------------------
# Addressing
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Address:
    """Host + port. An empty host means "every local interface"."""

    host: str
    port: int

    @classmethod
    def parse(cls, text: str, default_port: int) -> "Address":
        """Parse ``host``, ``host:port``, ``[v6]`` or ``[v6]:port``.

        Raises ``ValueError`` for anything else.
        """
        text = text.strip()
        if not text:
            raise ValueError("empty address")

        if text.startswith("["):
            host, sep, rest = text[1:].partition("]")
            if not sep or not host:
                raise ValueError(f"invalid address: {text!r}")
            if rest and not rest.startswith(":"):
                raise ValueError(f"invalid address: {text!r}")
            port_s, has_port = rest[1:], bool(rest)
        elif text.count(":") == 1:
            host, port_s = text.split(":")
            has_port = True
        else:                                   # Plain host or bare IPv6 literal
            host, port_s, has_port = text, "", False

        if not host:
            raise ValueError(f"invalid address: {text!r}")
        if has_port:
            if not port_s.isdigit():
                raise ValueError(f"invalid port in address: {text!r}")
            port = int(port_s)
        else:
            port = default_port
        if not 0 < port <= 65535:
            raise ValueError(f"port out of range in address: {text!r}")
        return cls(host, port)

    def __str__(self) -> str:
        host = self.host or "*"
        if ":" in host:
            return f"[{host}]:{self.port}"
        return f"{host}:{self.port}"


# ---------------------------------------------------------------------
# Events & messages
# ---------------------------------------------------------------------

class ConnectionState(enum.Enum):
    NONE = "none"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED_BY_PEER = "closed_by_peer"
    PROBLEM_DETECTED_LOCALLY = "problem_detected_locally"

    @property
    def is_closed(self) -> bool:
        return self in (ConnectionState.CLOSED_BY_PEER, ConnectionState.PROBLEM_DETECTED_LOCALLY)


@dataclass(frozen=True, slots=True)
class StatusChange:
    """One connection state transition, as handed to the status callback."""

    conn: int
    old_state: ConnectionState
    state: ConnectionState
    end_reason: int = 0
    end_debug: str = ""
    description: str = ""


@dataclass(frozen=True, slots=True)
class Message:
    """One inbound message; ``data`` has exactly the length that was sent."""

    conn: int
    data: bytes


StatusCallback = Callable[[StatusChange], None]


@dataclass(slots=True)
class Link:
    """Backend-independent state of one connection handle."""

    handle: int
    callback: StatusCallback
    description: str
    state: ConnectionState = ConnectionState.NONE
    name: str = ""
    group: int = INVALID_HANDLE
    end_reason: int = 0
    end_debug: str = ""
    inbox: Deque[bytes] = field(default_factory=deque)

    @property
    def label(self) -> str:
        """Human description used in logs: name + peer address."""
        return f"{self.name} ({self.description})" if self.name else self.description


# ---------------------------------------------------------------------
# Transport base
# ---------------------------------------------------------------------

class Transport(abc.ABC):
    """Poll-style reliable transport.

    Subclasses create :class:`Link` records through :meth:`_new_link`, report
    state transitions through :meth:`_set_state` and hand inbound payloads to
    :meth:`_deliver`. :meth:`pump` is called at the start of every receive
    call so a backend can move bytes without a thread of its own.
    """

    def __init__(self) -> None:
        self._handles = itertools.count(1)
        self._links: Dict[int, Link] = {}
        self._groups: Dict[int, Deque[Message]] = {}
        self._events: Deque[StatusChange] = deque()

    # -------------------------------------------------- backend hooks
    @abc.abstractmethod
    def create_listener(self, address: Address, on_status_changed: StatusCallback) -> int:
        """Start accepting connections; raises :class:`TransportError`."""

    @abc.abstractmethod
    def close_listener(self, listener: int) -> None: ...

    @abc.abstractmethod
    def listen_address(self, listener: int) -> Address:
        """Actual bound address (useful after listening on port 0)."""

    @abc.abstractmethod
    def connect(self, address: Address, on_status_changed: StatusCallback) -> int:
        """Begin connecting; raises :class:`TransportError` if impossible."""

    @abc.abstractmethod
    def accept(self, conn: int) -> bool: ...

    @abc.abstractmethod
    def send(self, conn: int, data: bytes, reliable: bool = True) -> bool:
        """Queue a message; returns False if it was dropped."""

    @abc.abstractmethod
    def close_connection(self, conn: int, reason: int = 0, debug: str = "", linger: bool = False) -> None: ...

    @abc.abstractmethod
    def shutdown(self, grace: float = 0.5) -> None:
        """Flush lingering connections for up to ``grace`` seconds, free everything."""

    def pump(self) -> None:
        """Move bytes between sockets and queues (no-op for in-memory backends)."""

    # -------------------------------------------------- poll groups
    def create_poll_group(self) -> int:
        group = next(self._handles)
        self._groups[group] = deque()
        return group

    def destroy_poll_group(self, group: int) -> None:
        if self._groups.pop(group, None) is None:
            return
        for link in self._links.values():
            if link.group == group:
                link.group = INVALID_HANDLE

    def set_poll_group(self, conn: int, group: int) -> bool:
        link = self._links.get(conn)
        if link is None or (group != INVALID_HANDLE and group not in self._groups):
            return False
        self._purge_group(link)
        link.group = group
        if group != INVALID_HANDLE:
            # Messages that arrived before the assignment keep their order.
            queue = self._groups[group]
            while link.inbox:
                queue.append(Message(conn, link.inbox.popleft()))
        return True

    # -------------------------------------------------- receiving
    def receive_on_connection(self, conn: int) -> Optional[Message]:
        self.pump()
        link = self._links.get(conn)
        if link is None:
            raise TransportError(f"invalid connection handle {conn}")
        if link.group != INVALID_HANDLE or not link.inbox:
            return None
        return Message(conn, link.inbox.popleft())

    def receive_on_poll_group(self, group: int) -> Optional[Message]:
        self.pump()
        queue = self._groups.get(group)
        if queue is None:
            raise TransportError(f"invalid poll group handle {group}")
        return queue.popleft() if queue else None

    # -------------------------------------------------- events
    def run_callbacks(self) -> None:
        """Deliver every queued state change to its connection's callback.

        Does not service the backend: messages read together with a close
        must reach the receive queues before the close is reported.
        """
        while self._events:
            change = self._events.popleft()
            link = self._links.get(change.conn)
            if link is None:                      # Closed by the application meanwhile
                continue
            link.callback(change)

    # -------------------------------------------------- introspection
    def get_connection_state(self, conn: int) -> ConnectionState:
        link = self._links.get(conn)
        return link.state if link else ConnectionState.NONE

    def set_connection_name(self, conn: int, name: str) -> None:
        link = self._links.get(conn)
        if link is not None:
            link.name = name

    def connection_description(self, conn: int) -> str:
        link = self._links.get(conn)
        return link.label if link else f"#{conn}"

    # -------------------------------------------------- context manager
    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # -------------------------------------------------- helpers for backends
    def _new_link(self, callback: StatusCallback, description: str) -> Link:
        link = Link(next(self._handles), callback, description)
        self._links[link.handle] = link
        return link

    def _drop_link(self, conn: int) -> Optional[Link]:
        link = self._links.pop(conn, None)
        if link is not None:
            self._purge_group(link)
        return link

    def _set_state(self, link: Link, state: ConnectionState, reason: int = 0, debug: str = "") -> None:
        if link.state is state:
            return
        old = link.state
        link.state = state
        if state.is_closed:
            link.end_reason, link.end_debug = reason, debug
        LOG.debug("Connection %s: %s -> %s %s", link.label, old.value, state.value, debug)
        self._events.append(StatusChange(link.handle, old, state, reason, debug, link.label))

    def _deliver(self, link: Link, data: bytes) -> None:
        if link.group != INVALID_HANDLE:
            self._groups[link.group].append(Message(link.handle, data))
        else:
            link.inbox.append(data)

    def _purge_group(self, link: Link) -> None:
        queue = self._groups.get(link.group)
        if queue:
            kept = [m for m in queue if m.conn != link.handle]
            queue.clear()
            queue.extend(kept)
