#!/usr/bin/env python3
"""Shared constants, message texts and payload helpers used by client & server.

The chat protocol is plain human-readable text: every transport message is
one UTF‑8 string of exact length (no terminator). Everything that travels over
the network is built or parsed here so client & server never disagree.
"""

from __future__ import annotations       # Postponed annotation evaluation (PEP 563)
import random
from dataclasses import dataclass
from typing import Optional

# --- Network configuration -------------------------------------------------
DEFAULT_PORT: int = 27020     # Well‑known port on which the server listens

# --- Command keywords ------------------------------------------------------
NICK_COMMAND = "/nick"        # Network command: rename the sender
QUIT_COMMAND = "/quit"        # Local console command (both roles)

# Characters skipped between "/nick" and the new name (C isspace set).
NICK_SEPARATORS = " \t\n\v\f\r"

# --- Nickname generation ---------------------------------------------------
NICK_PREFIX = "BraveWarrior"
NICK_SUFFIX_MIN = 10000
NICK_SUFFIX_MAX = 109999      # Inclusive

# --- Server → client texts -------------------------------------------------
WELCOME = (
    "Welcome, stranger.  Thou art known to us for now as '{nick}'; "
    "upon thine command '/nick' we shall know thee otherwise."
)
ALONE = "Thou art utterly alone."
JOINED = "Hark!  A stranger hath joined this merry host.  For now we shall call them '{nick}'"
RENAMED = "{old} shall henceforth be known as {new}"
RENAME_ACK = "Thou shalt henceforth be known as {new}"
CHAT_LINE = "{nick}: {text}"
FALLEN = "Alas, {nick} hath fallen into shadow.  ({debug})"
DEPARTED = "{nick} hath departed"
SERVER_SHUTDOWN = "Server is shutting down. Goodbye."

# --- Close reasons ---------------------------------------------------------
CLIENT_GOODBYE = "Goodbye"
SERVER_GOODBYE = "Server Shutdown"

# --- Local (console) texts -------------------------------------------------
SERVER_ONLY_QUIT = "The server only knows one command: '/quit'"
CONNECT_FAILED = "We sought the remote host, yet our efforts were met with defeat.  ({debug})"
LOST_CONTACT = "Alas, troubles beset us; we have lost contact with the host.  ({debug})"
HOST_FAREWELL = "The host hath bidden us farewell.  ({debug})"

# --- Payload helpers -------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ChatCommand:
    """One parsed inbound payload.

    ``nick`` is set for a ``/nick`` command (possibly empty), ``None`` for
    ordinary chat text carried in ``text``.
    """

    text: str
    nick: Optional[str] = None

    @property
    def is_rename(self) -> bool:
        return self.nick is not None


def encode_text(text: str) -> bytes:
    """str ⟶ exact-length UTF‑8 payload."""
    return text.encode("utf-8")


def decode_payload(data: bytes) -> str:
    """Exact-length payload ⟶ str; undecodable bytes become U+FFFD."""
    return bytes(data).decode("utf-8", errors="replace")


def parse_payload(data: bytes) -> ChatCommand:
    """Classify an inbound payload; first match wins.

    ``/nick`` is matched as a plain five-character prefix. Whitespace right
    after the keyword is skipped, anything after that (including trailing
    whitespace) is the new nickname.
    """
    text = decode_payload(data)
    if text.startswith(NICK_COMMAND):
        return ChatCommand(text, nick=text[len(NICK_COMMAND):].lstrip(NICK_SEPARATORS))
    return ChatCommand(text)


def generate_nickname(rng: Optional[random.Random] = None) -> str:
    """Placeholder name handed to every newly accepted client."""
    rng = rng or random
    return f"{NICK_PREFIX}{rng.randint(NICK_SUFFIX_MIN, NICK_SUFFIX_MAX)}"


def departure_notice(nick: str, debug: str, problem: bool) -> str:
    """Text broadcast when a connected client goes away."""
    if problem:
        return FALLEN.format(nick=nick, debug=debug)
    notice = DEPARTED.format(nick=nick)
    return f"{notice}  ({debug})" if debug else notice
