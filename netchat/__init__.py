"""netchat – a toy multi-client chat over a reliable-message transport.

Importing this package exposes :class:`netchat.ChatServer`,
:class:`netchat.ChatClient` and the transport backends, allowing the whole
stack to be embedded in another application or launched via
``python -m netchat``.
"""

# ------------------------ re-exports ------------------------
from .client import ChatClient                        # noqa: F401
from .console import ConsoleInput                     # noqa: F401
from .errors import InvariantViolation, TransportError  # noqa: F401
from .registry import ClientRegistry, ClientSession   # noqa: F401
from .server import ChatServer                        # noqa: F401
from .transport import Address, ConnectionState, Transport  # noqa: F401
from .transport_memory import MemoryNetwork, MemoryTransport  # noqa: F401
from .transport_tcp import TcpTransport               # noqa: F401

# ------------------------ public API ------------------------
__all__: list[str] = [
    "ChatClient",          # Console chat client
    "ChatServer",          # Matching server implementation
    "ConsoleInput",
    "ClientRegistry",
    "ClientSession",
    "Address",
    "ConnectionState",
    "Transport",
    "TcpTransport",        # Real network backend
    "MemoryNetwork",
    "MemoryTransport",     # In-process backend for tests / demos
    "InvariantViolation",
    "TransportError",
]

__version__ = "1.0.0"
