"""
WSRelay Command Surface

Host-facing operations over a RelayServer. Payloads cross this boundary in
their transport encoding (base64 text) and are decoded here before reaching
the core.

RelayCommands is for hosts that already run an asyncio loop. RelayThread runs
the relay on a private loop in a background thread and offers blocking
versions of the same operations for synchronous hosts.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, Optional

from relay.config import RelayConfig
from relay.events import EventEmitter
from relay.server import AddressResolver, RelayServer, validate_port
from relay.utils.codec import decode_payload
from relay.utils.net import get_local_ip


logger = logging.getLogger(__name__)


class RelayCommands:
    """
    Command surface for start, stop, send and address lookup.

    Example:
        >>> commands = RelayCommands(RelayServer(emitter=on_event))
        >>> endpoint = await commands.start_server(4040)
        >>> await commands.send("aGVsbG8=")
        >>> await commands.stop_server()
    """

    def __init__(self, server: RelayServer) -> None:
        self._server = server

    @property
    def server(self) -> RelayServer:
        return self._server

    async def start_server(self, port: int) -> str:
        """Start (or restart) the relay and return the advertised endpoint."""
        return await self._server.start(validate_port(port))

    async def stop_server(self) -> bool:
        """Stop the relay. Always succeeds."""
        await self._server.stop()
        return True

    async def send(self, data: str) -> bool:
        """
        Decode a base64 payload and send it to the peer as one binary frame.

        Raises:
            PayloadError: If data is not valid base64.
            NoPeerError: If no peer is connected.
            TransportError: If the write fails.
        """
        await self._server.send(decode_payload(data))
        return True

    def get_local_address(self) -> str:
        """Resolve the local LAN address. Independent of relay state."""
        return get_local_ip()


class RelayThread:
    """
    Run a relay on its own event loop in a background thread.

    Every method blocks the calling thread until the operation finishes on
    the relay loop. Host events are delivered on the relay thread.

    Example:
        >>> relay = RelayThread(emitter=QueueEmitter())
        >>> relay.start()
        >>> endpoint = relay.start_server(4040)
        >>> relay.send("aGVsbG8=")
        >>> relay.close()
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        emitter: Optional[EventEmitter] = None,
        address_resolver: Optional[AddressResolver] = None,
        call_timeout: Optional[float] = 30.0,
    ) -> None:
        """
        Initialize the relay thread.

        Args:
            config: Relay configuration.
            emitter: Receives host events, called on the relay thread.
            address_resolver: Local address lookup for the endpoint.
            call_timeout: Seconds a blocking call waits before giving up;
                None waits indefinitely.
        """
        self._config = config
        self._emitter = emitter
        self._address_resolver = address_resolver
        self._call_timeout = call_timeout

        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._commands: Optional[RelayCommands] = None
        self._started = threading.Event()

    def start(self) -> None:
        """Start the loop thread. Idempotent."""
        if self._thread and self._thread.is_alive():
            return

        self._started.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="RelayThread", daemon=True
        )
        self._thread.start()
        self._started.wait(timeout=10.0)

    def close(self) -> None:
        """Stop the relay, then stop the loop and join the thread."""
        if self._loop is None or self._thread is None:
            return
        try:
            self._call("stop_server")
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5.0)
            self._thread = None

    def _run_loop(self) -> None:
        """Run the event loop in the thread."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        server = RelayServer(self._config, self._emitter, self._address_resolver)
        self._commands = RelayCommands(server)
        self._started.set()

        try:
            self._loop.run_forever()
        finally:
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()
            self._loop = None
            logger.debug("Relay loop closed")

    def _call(self, command: str, *args: Any) -> Any:
        """Run a RelayCommands coroutine on the relay loop and wait for it."""
        if self._loop is None or self._commands is None:
            raise RuntimeError("RelayThread is not started")
        coro = getattr(self._commands, command)(*args)
        future: Future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=self._call_timeout)

    def start_server(self, port: int) -> str:
        return self._call("start_server", port)

    def stop_server(self) -> bool:
        return self._call("stop_server")

    def send(self, data: str) -> bool:
        return self._call("send", data)

    def get_local_address(self) -> str:
        if self._commands is None:
            return get_local_ip()
        return self._commands.get_local_address()

    def is_running(self) -> bool:
        """Check if the relay is accepting connections."""
        return self._commands is not None and self._commands.server.is_running()

    def has_peer(self) -> bool:
        return self._commands is not None and self._commands.server.has_peer()


__all__ = [
    "RelayCommands",
    "RelayThread",
]
