"""Server-side bookkeeping: which connection is which chatter.

A session exists for a connection handle exactly while that connection has
been accepted and not yet closed. The dispatch loop is single-threaded, so
no locking happens here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from .errors import InvariantViolation

__all__ = ["ClientSession", "ClientRegistry"]


@dataclass(slots=True)
class ClientSession:
    """Lightweight record for one accepted client (server side only)."""

    conn: int        # Transport connection handle
    nickname: str    # Display name; not unique, may be empty


class ClientRegistry:
    """Insertion-ordered map of connection handle ➜ :class:`ClientSession`."""

    def __init__(self) -> None:
        self._sessions: Dict[int, ClientSession] = {}

    def add(self, conn: int, nickname: str) -> ClientSession:
        if conn in self._sessions:
            raise InvariantViolation(f"connection {conn} is already registered")
        session = ClientSession(conn, nickname)
        self._sessions[conn] = session
        return session

    def rename(self, conn: int, nickname: str) -> bool:
        """Change a nickname; unknown handles are ignored (returns False)."""
        session = self._sessions.get(conn)
        if session is None:
            return False
        session.nickname = nickname
        return True

    def remove(self, conn: int) -> Optional[ClientSession]:
        """Drop a session. Removing an absent handle is a no-op returning None."""
        return self._sessions.pop(conn, None)

    def get(self, conn: int) -> Optional[ClientSession]:
        return self._sessions.get(conn)

    def for_each(self, fn: Callable[[ClientSession], None]) -> None:
        for session in list(self._sessions.values()):
            fn(session)

    def clear(self) -> None:
        self._sessions.clear()

    @property
    def count(self) -> int:
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, conn: object) -> bool:
        return conn in self._sessions

    def __iter__(self) -> Iterator[ClientSession]:
        return iter(list(self._sessions.values()))
