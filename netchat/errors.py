"""Exception types shared by the chat core and the transport backends."""

from __future__ import annotations

__all__ = ["ChatError", "InvariantViolation", "TransportError"]


class ChatError(Exception):
    """Base class for every error raised by :mod:`netchat`."""


class InvariantViolation(ChatError, RuntimeError):
    """Internal bookkeeping is inconsistent (programming error, never caught)."""


class TransportError(ChatError):
    """The transport could not perform a request (listen, connect, receive…)."""
