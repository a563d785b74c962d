#!/usr/bin/env python3
"""Non-blocking console input for the dispatch loop.

A daemon thread waits on the input stream with ``select`` (short timeout, so
it notices the quit token), reads raw bytes, splits them into lines and pushes
them onto a thread-safe FIFO. The dispatch loop pops lines with
:meth:`ConsoleInput.get_next`, which never blocks.

Reading the file descriptor directly keeps the stream's own buffer empty, so
``select`` always sees pending data. Where ``select`` cannot wait on a console
(Windows) the thread falls back to blocking ``readline`` calls; such a reader
cannot be interrupted, so ``close()`` only waits ``timeout`` seconds for it.
"""

from __future__ import annotations

import os
import queue
import select
import sys
import threading
from typing import Optional, TextIO

from .util import LOG

__all__ = ["ConsoleInput"]

READ_CHUNK = 4096


class ConsoleInput:
    """Background line reader feeding a FIFO; one instance per process."""

    def __init__(
        self,
        quit_event: threading.Event,
        stream: Optional[TextIO] = None,
        poll_interval: float = 0.1,
        use_select: Optional[bool] = None,
    ) -> None:
        self.quit_event = quit_event
        self.stream = stream if stream is not None else sys.stdin
        self.poll_interval = poll_interval
        # select() only accepts sockets on Windows
        self.use_select = os.name == "posix" if use_select is None else use_select

        self._lines: "queue.Queue[str]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    # ---------------------------------------------------------------- lifecycle
    def start(self) -> "ConsoleInput":
        if self._thread is None:
            target = self._read_loop if self.use_select else self._blocking_read_loop
            self._thread = threading.Thread(target=target, name="console-input", daemon=True)
            self._thread.start()
        return self

    def close(self, timeout: Optional[float] = 1.0) -> None:
        """Ask the reader to stop and wait for it."""
        self.quit_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def __enter__(self) -> "ConsoleInput":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---------------------------------------------------------------- consumer side
    def get_next(self) -> Optional[str]:
        """Next non-blank line, trimmed; ``None`` when nothing is queued."""
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                return None
            line = line.strip()
            if line:
                return line

    def push(self, line: str) -> None:
        """Queue a line as if it had been typed."""
        self._lines.put(line)

    # ---------------------------------------------------------------- reader thread
    def _read_loop(self) -> None:
        try:
            fd = self.stream.fileno()
        except (OSError, ValueError) as exc:          # Not backed by a real descriptor
            self._input_failed(f"Cannot read console input ({exc}), quitting")
            return

        pending = b""
        while not self.quit_event.is_set():
            try:
                ready, _, _ = select.select([fd], [], [], self.poll_interval)
                if not ready:
                    continue
                chunk = os.read(fd, READ_CHUNK)
            except OSError as exc:
                self._input_failed(f"Failed to read on stdin ({exc}), quitting")
                return

            if not chunk:                                  # EOF
                if pending:
                    self._lines.put(pending.decode("utf-8", errors="replace"))
                self._input_failed("Failed to read on stdin, quitting")
                return

            pending += chunk
            *lines, pending = pending.split(b"\n")
            for raw in lines:
                self._lines.put(raw.decode("utf-8", errors="replace"))

    def _input_failed(self, message: str) -> None:
        if self.quit_event.is_set():                       # We are shutting down anyway
            return
        LOG.warning(message)
        self.quit_event.set()

    def _blocking_read_loop(self) -> None:
        LOG.debug("Console select() unsupported here, using blocking reads")
        while not self.quit_event.is_set():
            try:
                line = self.stream.readline()
            except (OSError, ValueError) as exc:
                self._input_failed(f"Failed to read on stdin ({exc}), quitting")
                return

            if not line:                                   # EOF
                self._input_failed("Failed to read on stdin, quitting")
                return
            self._lines.put(line.rstrip("\r\n"))
