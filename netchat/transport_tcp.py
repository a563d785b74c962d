#!/usr/bin/env python3
"""TCP transport: reliable ordered messages over length-prefixed frames.

Frame format::

    [4-byte big-endian body length][1-byte kind][body]

    kind DATA    body = application message
    kind ACCEPT  body = empty; server accepted the connection
    kind CLOSE   body = 4-byte signed reason + UTF‑8 debug text

All sockets are non-blocking and multiplexed with :mod:`selectors`. Nothing
runs in the background: the sockets are serviced whenever the owner polls for
messages (``receive_on_connection`` / ``receive_on_poll_group``), which the
chat dispatch loop does on every tick.
"""

from __future__ import annotations

import errno
import os
import selectors
import socket
import struct
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .transport import (
    Address,
    ConnectionState,
    Link,
    StatusCallback,
    Transport,
    TransportError,
)
from .util import LOG

__all__ = ["TcpTransport", "MAX_MESSAGE_BYTES"]

FRAME_HEADER = struct.Struct(">IB")
CLOSE_HEADER = struct.Struct(">i")

KIND_DATA = 0
KIND_ACCEPT = 1
KIND_CLOSE = 2

MAX_MESSAGE_BYTES = 512 * 1024
RECV_CHUNK = 65536

_CONNECT_IN_PROGRESS = {0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EAGAIN}


def _frame(kind: int, body: bytes = b"") -> bytes:
    return FRAME_HEADER.pack(len(body), kind) + body


def _close_frame(reason: int, debug: str) -> bytes:
    return _frame(KIND_CLOSE, CLOSE_HEADER.pack(reason) + debug.encode("utf-8"))


@dataclass(slots=True)
class _Stream:
    """Socket + buffers behind one connection handle."""

    sock: Optional[socket.socket]
    link: Link
    incoming: bool                 # Created by one of our listeners
    connecting: bool = False       # Non-blocking connect() still in flight
    started: float = field(default_factory=time.monotonic)
    rbuf: bytearray = field(default_factory=bytearray)
    wbuf: bytearray = field(default_factory=bytearray)
    deadline: float = 0.0          # Linger give-up time


class TcpTransport(Transport):
    """Selector-driven TCP backend."""

    def __init__(
        self,
        *,
        max_message_bytes: int = MAX_MESSAGE_BYTES,
        max_buffer_bytes: int = 8 * 1024 * 1024,
        connect_timeout: float = 10.0,
        linger_timeout: float = 5.0,
    ) -> None:
        super().__init__()
        self.max_message_bytes = int(max_message_bytes)
        self.max_buffer_bytes = int(max_buffer_bytes)
        self.connect_timeout = float(connect_timeout)
        self.linger_timeout = float(linger_timeout)

        self._sel = selectors.DefaultSelector()
        self._listeners: Dict[int, Tuple[socket.socket, StatusCallback]] = {}
        self._streams: Dict[int, _Stream] = {}
        self._lingering: List[_Stream] = []
        self._closed = False

    # ================================================================ listening
    def create_listener(self, address: Address, on_status_changed: StatusCallback) -> int:
        try:
            if not address.host and socket.has_dualstack_ipv6():
                sock = socket.create_server(
                    ("", address.port), family=socket.AF_INET6, dualstack_ipv6=True
                )
            else:
                sock = socket.create_server((address.host, address.port))
        except OSError as exc:
            raise TransportError(f"Failed to listen on port {address.port}: {exc}") from exc

        sock.setblocking(False)
        listener = next(self._handles)
        self._listeners[listener] = (sock, on_status_changed)
        self._sel.register(sock, selectors.EVENT_READ, data=("listener", listener))
        return listener

    def close_listener(self, listener: int) -> None:
        entry = self._listeners.pop(listener, None)
        if entry is None:
            return
        self._sel.unregister(entry[0])
        entry[0].close()

    def listen_address(self, listener: int) -> Address:
        try:
            sock = self._listeners[listener][0]
        except KeyError:
            raise TransportError(f"invalid listener handle {listener}") from None
        host, port = sock.getsockname()[:2]
        return Address(host, port)

    # ================================================================ connecting
    def connect(self, address: Address, on_status_changed: StatusCallback) -> int:
        try:
            infos = socket.getaddrinfo(address.host, address.port, type=socket.SOCK_STREAM)
        except socket.gaierror as exc:
            raise TransportError(f"Cannot resolve {address}: {exc}") from exc
        family, kind, proto, _, sockaddr = infos[0]

        try:
            sock = socket.socket(family, kind, proto)
        except OSError as exc:
            raise TransportError(f"Cannot connect to {address}: {exc}") from exc
        sock.setblocking(False)
        try:
            err = sock.connect_ex(sockaddr)
        except OSError as exc:
            sock.close()
            raise TransportError(f"Cannot connect to {address}: {exc}") from exc

        link = self._new_link(on_status_changed, f"tcp://{address}")
        self._set_state(link, ConnectionState.CONNECTING)
        stream = _Stream(sock, link, incoming=False, connecting=True)
        self._streams[link.handle] = stream

        if err not in _CONNECT_IN_PROGRESS:
            self._fail(stream, os.strerror(err))
        else:
            self._sel.register(sock, selectors.EVENT_READ | selectors.EVENT_WRITE, data=("conn", link.handle))
        return link.handle

    def accept(self, conn: int) -> bool:
        stream = self._streams.get(conn)
        if (
            stream is None
            or not stream.incoming
            or stream.sock is None
            or stream.link.state is not ConnectionState.CONNECTING
        ):
            return False
        stream.wbuf += _frame(KIND_ACCEPT)
        self._set_state(stream.link, ConnectionState.CONNECTED)
        self._flush_live(stream)
        return True

    # ================================================================ data
    def send(self, conn: int, data: bytes, reliable: bool = True) -> bool:
        stream = self._streams.get(conn)
        if stream is None or stream.sock is None or stream.link.state.is_closed:
            return False
        if len(data) > self.max_message_bytes:
            LOG.warning("Dropping %d-byte message to %s: over the %d-byte limit",
                        len(data), stream.link.label, self.max_message_bytes)
            return False
        if not reliable and stream.wbuf:
            return False                          # Backed up: unreliable data is expendable
        if len(stream.wbuf) + len(data) > self.max_buffer_bytes:
            self._fail(stream, "Outbound buffer overflow")
            return False

        stream.wbuf += _frame(KIND_DATA, bytes(data))
        if not stream.connecting:
            self._flush_live(stream)
        return True

    # ================================================================ closing
    def close_connection(self, conn: int, reason: int = 0, debug: str = "", linger: bool = False) -> None:
        self._drop_link(conn)
        stream = self._streams.pop(conn, None)
        if stream is None or stream.sock is None:
            return

        if stream.connecting or stream.link.state.is_closed:
            self._close_socket(stream)
            return

        stream.wbuf += _close_frame(reason, debug)
        if linger:
            self._sel.unregister(stream.sock)
            stream.deadline = time.monotonic() + self.linger_timeout
            self._lingering.append(stream)
            self._flush_lingering()
            return

        # No linger: one best-effort write, whatever does not fit is lost.
        self._write(stream)
        self._close_socket(stream)

    def shutdown(self, grace: float = 0.5) -> None:
        """Give lingering connections ``grace`` seconds, then release everything."""
        if self._closed:
            return
        self._closed = True

        for conn in list(self._streams):
            self.close_connection(conn)

        deadline = time.monotonic() + grace
        while self._lingering and time.monotonic() < deadline:
            self._flush_lingering()
            time.sleep(0.01)
        for stream in self._lingering:
            self._close_socket(stream)
        self._lingering.clear()

        for listener in list(self._listeners):
            self.close_listener(listener)
        self._sel.close()
        self._groups.clear()
        self._events.clear()

    # ================================================================ servicing
    def pump(self) -> None:
        if self._closed:
            return
        if self._sel.get_map():
            for key, mask in self._sel.select(timeout=0):
                kind, handle = key.data
                if kind == "listener":
                    self._accept_pending(handle)
                    continue
                stream = self._streams.get(handle)
                if stream is None or stream.sock is None:
                    continue
                if stream.connecting:
                    if mask & selectors.EVENT_WRITE:
                        self._finish_connect(stream)
                    continue
                if mask & selectors.EVENT_READ:
                    self._read(stream)
                if mask & selectors.EVENT_WRITE and stream.sock is not None:
                    self._flush_live(stream)

        now = time.monotonic()
        for stream in list(self._streams.values()):
            if (
                not stream.incoming
                and stream.link.state is ConnectionState.CONNECTING
                and now - stream.started > self.connect_timeout
            ):
                self._fail(stream, "Timed out attempting to connect")
        self._flush_lingering()

    def _accept_pending(self, listener: int) -> None:
        lsock, callback = self._listeners[listener]
        while True:
            try:
                sock, addr = lsock.accept()
            except BlockingIOError:
                return
            except OSError as exc:
                LOG.warning("accept() on listener %d failed: %s", listener, exc)
                return

            sock.setblocking(False)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            link = self._new_link(callback, f"tcp://{Address(addr[0], addr[1])}")
            stream = _Stream(sock, link, incoming=True)
            self._streams[link.handle] = stream
            self._sel.register(sock, selectors.EVENT_READ | selectors.EVENT_WRITE, data=("conn", link.handle))
            self._set_state(link, ConnectionState.CONNECTING)

    def _finish_connect(self, stream: _Stream) -> None:
        err = stream.sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if err:
            self._fail(stream, os.strerror(err))
            return
        stream.connecting = False
        stream.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        LOG.debug("TCP connection to %s established, awaiting acceptance", stream.link.label)
        self._flush_live(stream)

    def _read(self, stream: _Stream) -> None:
        try:
            chunk = stream.sock.recv(RECV_CHUNK)
        except BlockingIOError:
            return
        except OSError as exc:
            self._fail(stream, str(exc))
            return

        if not chunk:
            self._close_socket(stream)
            self._set_state(stream.link, ConnectionState.CLOSED_BY_PEER,
                            debug="Connection closed by remote host")
            return

        stream.rbuf += chunk
        self._parse_frames(stream)

    def _parse_frames(self, stream: _Stream) -> None:
        buf = stream.rbuf
        while len(buf) >= FRAME_HEADER.size:
            length, kind = FRAME_HEADER.unpack_from(buf)
            if length > self.max_message_bytes:
                self._fail(stream, f"Oversized frame ({length} bytes)")
                return
            end = FRAME_HEADER.size + length
            if len(buf) < end:
                return
            body = bytes(buf[FRAME_HEADER.size:end])
            del buf[:end]

            if kind == KIND_DATA:
                self._deliver(stream.link, body)
            elif kind == KIND_ACCEPT and not stream.incoming:
                self._set_state(stream.link, ConnectionState.CONNECTED)
            elif kind == KIND_CLOSE and len(body) >= CLOSE_HEADER.size:
                (reason,) = CLOSE_HEADER.unpack_from(body)
                debug = body[CLOSE_HEADER.size:].decode("utf-8", errors="replace")
                self._close_socket(stream)
                self._set_state(stream.link, ConnectionState.CLOSED_BY_PEER, reason, debug)
                return
            else:
                self._fail(stream, f"Unexpected frame kind {kind}")
                return

    # ================================================================ writing
    def _write(self, stream: _Stream) -> Optional[str]:
        """One non-blocking send of the pending buffer; returns an error text."""
        if not stream.wbuf:
            return None
        try:
            sent = stream.sock.send(stream.wbuf)
        except BlockingIOError:
            return None
        except OSError as exc:
            return str(exc)
        del stream.wbuf[:sent]
        return None

    def _flush_live(self, stream: _Stream) -> None:
        error = self._write(stream)
        if error is not None:
            self._fail(stream, error)

    def _flush_lingering(self) -> None:
        now = time.monotonic()
        for stream in list(self._lingering):
            error = self._write(stream)
            if error is not None or not stream.wbuf or now > stream.deadline:
                if stream.wbuf:
                    LOG.debug("Giving up on lingering connection %s (%s)",
                              stream.link.label, error or "timeout")
                self._close_socket(stream)
                self._lingering.remove(stream)

    # ================================================================ teardown
    def _fail(self, stream: _Stream, debug: str) -> None:
        self._close_socket(stream)
        if not stream.link.state.is_closed:
            self._set_state(stream.link, ConnectionState.PROBLEM_DETECTED_LOCALLY, debug=debug)

    def _close_socket(self, stream: _Stream) -> None:
        sock, stream.sock = stream.sock, None
        stream.connecting = False
        if sock is None:
            return
        if self._sel.get_map() is not None and sock in self._sel.get_map():
            self._sel.unregister(sock)
        sock.close()
