"""
WSRelay - single-peer WebSocket relay
"""
__version__ = "0.1.0"

from relay.config import RelayConfig

from relay.events import (
    RelayEvent,
    HostEvent,
    EventEmitter,
    CallbackEmitter,
    QueueEmitter,
)

from relay.exceptions import (
    RelayError,
    BindError,
    AddressError,
    HandshakeError,
    TransportError,
    NoPeerError,
    PayloadError,
    ErrorCodes,
)

from relay.server import RelayServer

from relay.commands import (
    RelayCommands,
    RelayThread,
)

__all__ = [
    "__version__",
    # Config
    "RelayConfig",
    # Events
    "RelayEvent",
    "HostEvent",
    "EventEmitter",
    "CallbackEmitter",
    "QueueEmitter",
    # Exceptions
    "RelayError",
    "BindError",
    "AddressError",
    "HandshakeError",
    "TransportError",
    "NoPeerError",
    "PayloadError",
    "ErrorCodes",
    # Server
    "RelayServer",
    "RelayCommands",
    "RelayThread",
]
