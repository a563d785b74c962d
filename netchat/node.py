"""Poll/dispatch loop shared by the chat server and client.

Each tick drains, in order:

1. every queued inbound message
2. every queued connection state change
3. every queued local console line

then waits ``tick_interval`` seconds (or less, if quit is requested).
"""

from __future__ import annotations

import abc
import threading
from typing import Optional

from .console import ConsoleInput
from .protocol import QUIT_COMMAND
from .transport import Transport

__all__ = ["ChatNode", "DEFAULT_TICK"]

DEFAULT_TICK = 0.01


class ChatNode(abc.ABC):
    """One role (server or client) running over a :class:`Transport`."""

    def __init__(
        self,
        transport: Transport,
        quit_event: threading.Event,
        console: Optional[ConsoleInput] = None,
        tick_interval: float = DEFAULT_TICK,
    ) -> None:
        self.transport = transport
        self.quit_event = quit_event
        self.console = console
        self.tick_interval = tick_interval

    @property
    def quitting(self) -> bool:
        return self.quit_event.is_set()

    # ---------------------------------------------------------------- loop
    def run_loop(self) -> None:
        while not self.quitting:
            self.tick()
            self.quit_event.wait(self.tick_interval)

    def tick(self) -> None:
        self.poll_incoming_messages()
        self.poll_connection_state_changes()
        self.poll_local_user_input()

    # ---------------------------------------------------------------- steps
    @abc.abstractmethod
    def poll_incoming_messages(self) -> None:
        """Drain and handle every queued inbound message."""

    def poll_connection_state_changes(self) -> None:
        self.transport.run_callbacks()

    def poll_local_user_input(self) -> None:
        if self.console is None:
            return
        while not self.quitting:
            line = self.console.get_next()
            if line is None:
                break
            self.handle_local_command(line)

    # ---------------------------------------------------------------- commands
    def handle_local_command(self, line: str) -> None:
        """React to one trimmed, non-empty console line."""
        if line == QUIT_COMMAND:
            self.quit_event.set()
            self.on_quit()
            return
        self.on_local_line(line)

    def on_quit(self) -> None:
        """Called once when the local user typed ``/quit``."""

    @abc.abstractmethod
    def on_local_line(self, line: str) -> None:
        """Any console line other than ``/quit``."""
