"""
WSRelay Server

This module implements the single-peer WebSocket relay. The relay listens on a
TCP port, accepts one peer connection at a time, forwards every inbound
message to the host as an event, and lets the host push binary frames back to
the peer.

Responsibilities:
    - Lifecycle coordination: start and stop are serialized by an operation
      lock; start always retires the previous instance before binding
    - Listener acquisition: address reuse plus bind retry (see relay.listener)
    - Connection acceptor: background task that accepts TCP connections,
      discards extras while a peer is connected, and upgrades the rest
    - Reader: background task per connection that forwards inbound messages
      and tears down connection state when the peer goes away

Invariants:
    - At most one connection exists at any instant
    - The connection slot is occupied exactly while a connection is alive and
      its reader has not yet observed close or error
    - Every stop joins the acceptor (which in turn joins its reader) before
      returning
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from websockets.frames import Opcode

from relay.config import RelayConfig
from relay.connection import DATA_OPCODES, FrameReader, FrameWriter, accept_websocket
from relay.events import EventEmitter, HostEvent, RelayEvent, emit_safely
from relay.exceptions import ErrorCodes, HandshakeError, NoPeerError, RelayError, TransportError
from relay.listener import bind_with_retry
from relay.utils.codec import encode_payload
from relay.utils.net import get_local_ip


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Returns the address advertised to peers on the local network
AddressResolver = Callable[[], str]


async def _run_to_completion(awaitable: Awaitable[T]) -> T:
    """Await a step that must finish even if the caller is cancelled."""
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await task
        raise


def validate_port(port: int) -> int:
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
        raise RelayError(
            message=f"port must be an unsigned 16-bit integer, got {port!r}",
            error_code=ErrorCodes.INVALID_PORT,
        )
    return port


class RelayServer:
    """
    Single-peer WebSocket relay.

    Owned by the host application context and passed by reference to whatever
    needs it; there is no module-level instance.

    Example:
        >>> server = RelayServer(RelayConfig(), emitter=print)
        >>> endpoint = await server.start(4040)
        >>> await server.send(b"hello")
        >>> await server.stop()
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        emitter: Optional[EventEmitter] = None,
        address_resolver: Optional[AddressResolver] = None,
    ) -> None:
        """
        Initialize the relay.

        Args:
            config: Relay configuration. Uses defaults if not provided.
            emitter: Receives host events (connection, message, close).
            address_resolver: Returns the local address used in the
                advertised endpoint. Defaults to LAN interface discovery.
        """
        self._config = config or RelayConfig()
        self._emitter = emitter
        self._resolve_address = address_resolver or get_local_ip

        # Write half of the connected peer, None when no peer
        self._slot: Optional[FrameWriter] = None
        self._slot_lock = asyncio.Lock()

        # Shutdown signal of the running acceptor
        self._shutdown: Optional[asyncio.Event] = None
        self._shutdown_lock = asyncio.Lock()

        # Handle of the running acceptor task
        self._acceptor: Optional[asyncio.Task] = None
        self._acceptor_lock = asyncio.Lock()

        # Guards the sequence of lifecycle operations, not data
        self._op_lock = asyncio.Lock()

        self._endpoint: Optional[str] = None

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def endpoint(self) -> Optional[str]:
        """Advertised host:port while running, else None."""
        return self._endpoint

    def set_emitter(self, emitter: Optional[EventEmitter]) -> None:
        """Replace the host event emitter."""
        self._emitter = emitter

    def is_running(self) -> bool:
        """Check if an acceptor task is alive."""
        return self._acceptor is not None and not self._acceptor.done()

    def has_peer(self) -> bool:
        """Check if a peer currently occupies the connection slot."""
        return self._slot is not None

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running(),
            "endpoint": self._endpoint,
            "peer": self._slot.peer if self._slot is not None else None,
        }

    async def start(self, port: Optional[int] = None) -> str:
        """
        Start the relay, replacing any running instance.

        Args:
            port: Port to listen on; 0 picks an ephemeral port. Defaults to
                the configured port.

        Returns:
            The ``host:port`` endpoint peers on the local network can reach.

        Raises:
            BindError: If no listener could be bound after retrying.
            AddressError: If the local network address cannot be resolved.
        """
        port = validate_port(self._config.port if port is None else port)

        async with self._op_lock:
            await _run_to_completion(self._retire())

            listener = await bind_with_retry(
                port,
                max_attempts=self._config.bind_attempts,
                delay=self._config.bind_retry_delay,
                host=self._config.bind_host,
                backlog=self._config.backlog,
            )

            try:
                local_port = listener.getsockname()[1]
                local_ip = self._resolve_address()
            except BaseException:
                listener.close()
                raise

            endpoint = f"{local_ip}:{local_port}"
            shutdown = asyncio.Event()
            async with self._shutdown_lock:
                self._shutdown = shutdown

            task = asyncio.create_task(
                self._accept_loop(listener, shutdown),
                name=f"relay-acceptor-{local_port}",
            )
            async with self._acceptor_lock:
                self._acceptor = task

            self._endpoint = endpoint
            logger.info(
                f"Relay started on {self._config.bind_host}:{local_port}, advertised as {endpoint}"
            )
            return endpoint

    async def stop(self) -> None:
        """
        Stop the relay.

        A no-op when nothing is running. Once the operation lock is held the
        retirement runs to completion even if the caller is cancelled.
        """
        async with self._op_lock:
            await _run_to_completion(self._retire())

    async def send(self, data: bytes) -> None:
        """
        Send one binary frame to the connected peer.

        Independent of lifecycle transitions; only the connection slot is
        locked.

        Raises:
            NoPeerError: If no peer is connected.
            TransportError: If the write fails.
        """
        async with self._slot_lock:
            if self._slot is None:
                raise NoPeerError()
            await self._slot.send(data)

    async def _retire(self) -> None:
        """
        Retire the current instance: signal, close the write half, join.

        Signalling first lets the acceptor observe shutdown even while it is
        blocked in accept; joining last leaves no task behind.
        """
        async with self._shutdown_lock:
            shutdown, self._shutdown = self._shutdown, None
        if shutdown is not None:
            shutdown.set()

        async with self._slot_lock:
            writer, self._slot = self._slot, None
            if writer is not None:
                await writer.close()

        async with self._acceptor_lock:
            task, self._acceptor = self._acceptor, None
        if task is not None:
            try:
                await task
            except Exception:
                logger.exception(f"Acceptor for {self._endpoint} failed")
            logger.info(f"Relay stopped ({self._endpoint})")

        self._endpoint = None

    def _emit(self, kind: RelayEvent, data: Optional[str] = None) -> None:
        emit_safely(self._emitter, HostEvent(kind, data))

    async def _until_shutdown(
        self, awaitable: Awaitable[T], shutdown: asyncio.Event
    ) -> Optional[T]:
        """Await awaitable unless the shutdown signal fires first (then None)."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(shutdown.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        if task.cancelled():
            return None
        return task.result()

    async def _accept_loop(self, listener: socket.socket, shutdown: asyncio.Event) -> None:
        """
        Accept connections until shutdown or a fatal listener error.

        The listener is closed on exit, releasing the port, and the reader of
        the last accepted connection is joined.
        """
        loop = asyncio.get_running_loop()
        has_peer = asyncio.Event()
        reader_task: Optional[asyncio.Task] = None

        try:
            port = listener.getsockname()[1]
            while True:
                try:
                    accepted = await self._until_shutdown(loop.sock_accept(listener), shutdown)
                except ConnectionAbortedError as e:
                    logger.debug(f"Connection aborted before accept: {e}")
                    continue
                except OSError as e:
                    # No host event for this case; is_running() turns False
                    logger.error(f"Listener on port {port} failed, acceptor exiting: {e}")
                    break
                if accepted is None:
                    break

                conn, address = accepted
                if has_peer.is_set():
                    logger.info(
                        f"Rejected connection from {address[0]}:{address[1]}: peer already connected"
                    )
                    conn.close()
                    continue

                try:
                    stream = await self._until_shutdown(
                        accept_websocket(
                            conn,
                            timeout=self._config.handshake_timeout,
                            max_buffer_size=self._config.max_buffer_size,
                            chunk_size=self._config.read_chunk_size,
                        ),
                        shutdown,
                    )
                except HandshakeError as e:
                    logger.warning(f"Handshake with {e.peer} failed: {e.message}")
                    continue
                if stream is None:
                    break

                reader, writer = stream.split(self._config.max_message_size)
                async with self._slot_lock:
                    if shutdown.is_set():
                        stream.abort()
                        break
                    has_peer.set()
                    self._slot = writer

                logger.info(f"Peer connected: {writer.peer}")
                self._emit(RelayEvent.CONNECTION)
                reader_task = asyncio.create_task(
                    self._read_loop(reader, writer, has_peer),
                    name=f"relay-reader-{writer.peer}",
                )
        finally:
            listener.close()
            if reader_task is not None:
                await reader_task

    async def _read_loop(
        self, reader: FrameReader, writer: FrameWriter, has_peer: asyncio.Event
    ) -> None:
        """Forward inbound messages until close or error, then clean up once."""
        limit = self._config.max_message_size
        try:
            async with contextlib.aclosing(reader.messages()) as messages:
                async for message in messages:
                    if message.opcode in DATA_OPCODES:
                        if message.size > limit:
                            logger.warning(
                                f"Dropped oversized {message.opcode.name.lower()} message "
                                f"from {reader.peer}: {message.size} > {limit} bytes"
                            )
                            continue
                        self._emit(RelayEvent.MESSAGE, encode_payload(message.payload))
                    elif message.opcode is Opcode.CLOSE:
                        break
        except TransportError as e:
            logger.info(f"Connection to {reader.peer} ended: {e.message}")
        finally:
            # has_peer is cleared only after ws-close is emitted
            try:
                async with self._slot_lock:
                    if self._slot is writer:
                        self._slot = None
                await writer.close()
                logger.info(f"Peer disconnected: {reader.peer}")
                self._emit(RelayEvent.CLOSE)
            finally:
                has_peer.clear()


__all__ = [
    "RelayServer",
    "AddressResolver",
    "validate_port",
]
