"""
WSRelay WebSocket Connection

This module drives the websockets Sans-I/O ``ServerProtocol`` over an
accepted TCP socket using asyncio streams. The acceptor owns the accept loop
itself, so it hands a raw socket here only once it has decided the
connection may proceed to the opening handshake.

After the handshake the connection is split into two halves:

    - FrameReader: the read half, owned by exactly one reader task
    - FrameWriter: the write half, stored in the server's connection slot

Both halves share one protocol object. Every protocol call and the write of
its output happen without an intervening await, so bytes from the two halves
never interleave within a frame.
"""
from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, List, Optional, Tuple

from websockets.exceptions import InvalidState
from websockets.frames import CloseCode, Frame, Opcode
from websockets.http11 import Request
from websockets.protocol import SEND_EOF, State
from websockets.server import ServerProtocol

from relay.exceptions import ErrorCodes, HandshakeError, TransportError


logger = logging.getLogger(__name__)

DATA_OPCODES = (Opcode.TEXT, Opcode.BINARY)


@dataclass
class InboundMessage:
    """
    One inbound WebSocket message.

    Fragmented messages are reassembled. Once a message grows past the
    reader's size limit its bytes are no longer buffered: ``payload`` is
    empty and ``size`` still reports the full length.

    Attributes:
        opcode: TEXT or BINARY for data messages, otherwise the control opcode
        payload: Message bytes
        size: Total message length in bytes
    """
    opcode: Opcode
    payload: bytes
    size: int


def describe_peer(sock: socket.socket) -> str:
    try:
        host, port = sock.getpeername()[:2]
    except OSError:
        return "unknown"
    return f"{host}:{port}"


class WebSocketStream:
    """A server-side WebSocket connection over asyncio streams."""

    def __init__(
        self,
        protocol: ServerProtocol,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer: str,
        chunk_size: int = 65536,
    ) -> None:
        self.protocol = protocol
        self.reader = reader
        self.writer = writer
        self.peer = peer
        self.chunk_size = chunk_size
        # Frames that arrived in the same read as the handshake request
        self._pending: List[Frame] = []

    @property
    def is_open(self) -> bool:
        return self.protocol.state is State.OPEN and not self.writer.is_closing()

    def flush(self) -> None:
        """Write everything the protocol has queued for the network."""
        for data in self.protocol.data_to_send():
            if data == SEND_EOF:
                if self.writer.can_write_eof():
                    self.writer.write_eof()
            else:
                self.writer.write(data)

    def take_pending(self) -> List[Frame]:
        frames, self._pending = self._pending, []
        return frames

    def abort(self) -> None:
        self.writer.transport.abort()

    async def handshake(self) -> Request:
        """
        Perform the opening handshake.

        Raises:
            HandshakeError: If the peer sends no valid upgrade request or the
                request is rejected.
        """
        request: Optional[Request] = None
        while request is None:
            data = await self.reader.read(self.chunk_size)
            if data:
                self.protocol.receive_data(data)
            else:
                self.protocol.receive_eof()
            events = self.protocol.events_received()
            self.flush()
            if events:
                request = events[0]
                self._pending = [e for e in events[1:] if isinstance(e, Frame)]
            elif self.protocol.handshake_exc is not None or not data:
                raise HandshakeError(
                    message=f"did not receive a valid upgrade request: {self.protocol.handshake_exc}",
                    error_code=ErrorCodes.HANDSHAKE_FAILED,
                    peer=self.peer,
                )

        response = self.protocol.accept(request)
        self.protocol.send_response(response)
        self.flush()
        await self.writer.drain()

        if self.protocol.state is not State.OPEN:
            raise HandshakeError(
                message=(
                    f"handshake rejected with {response.status_code}: "
                    f"{self.protocol.handshake_exc}"
                ),
                error_code=ErrorCodes.HANDSHAKE_FAILED,
                peer=self.peer,
            )
        return request

    def split(self, max_size: int) -> Tuple["FrameReader", "FrameWriter"]:
        """Split into the read half and the write half."""
        return FrameReader(self, max_size), FrameWriter(self)


async def accept_websocket(
    sock: socket.socket,
    *,
    timeout: float,
    max_buffer_size: Optional[int] = None,
    chunk_size: int = 65536,
) -> WebSocketStream:
    """
    Upgrade an accepted TCP socket to a WebSocket connection.

    The socket is closed on every failure path, including cancellation.

    Args:
        sock: Socket returned by accept.
        timeout: Seconds allowed for the opening handshake.
        max_buffer_size: Hard cap on one inbound message; exceeding it fails
            the connection with close code 1009.
        chunk_size: Bytes requested per socket read.

    Raises:
        HandshakeError: If the upgrade fails or times out.
    """
    peer = describe_peer(sock)
    try:
        reader, writer = await asyncio.open_connection(sock=sock)
    except OSError as e:
        sock.close()
        raise HandshakeError(
            message=f"failed to attach connection: {e}",
            error_code=ErrorCodes.HANDSHAKE_FAILED,
            peer=peer,
        ) from e
    except BaseException:
        sock.close()
        raise

    protocol = ServerProtocol(max_size=max_buffer_size)
    stream = WebSocketStream(protocol, reader, writer, peer, chunk_size)
    try:
        await asyncio.wait_for(stream.handshake(), timeout)
    except asyncio.TimeoutError as e:
        stream.abort()
        raise HandshakeError(
            message=f"opening handshake timed out after {timeout}s",
            error_code=ErrorCodes.HANDSHAKE_FAILED,
            peer=peer,
        ) from e
    except OSError as e:
        stream.abort()
        raise HandshakeError(
            message=f"connection failed during handshake: {e}",
            error_code=ErrorCodes.HANDSHAKE_FAILED,
            peer=peer,
        ) from e
    except BaseException:
        stream.abort()
        raise
    return stream


class FrameReader:
    """
    Read half of a WebSocket connection.

    Iterating yields InboundMessage objects in arrival order: reassembled
    data messages and control frames. Iteration ends at end of stream and
    raises TransportError on a read or protocol error.
    """

    def __init__(self, stream: WebSocketStream, max_size: int) -> None:
        self._stream = stream
        self._max_size = max_size

    @property
    def peer(self) -> str:
        return self._stream.peer

    def __aiter__(self) -> AsyncIterator[InboundMessage]:
        return self.messages()

    async def messages(self) -> AsyncGenerator[InboundMessage, None]:
        protocol = self._stream.protocol
        opcode: Optional[Opcode] = None
        buffer = bytearray()
        size = 0
        frames: List[Frame] = self._stream.take_pending()

        while True:
            for frame in frames:
                if frame.opcode in DATA_OPCODES:
                    opcode, size = frame.opcode, 0
                    buffer.clear()
                elif frame.opcode is not Opcode.CONT:
                    yield InboundMessage(frame.opcode, bytes(frame.data), len(frame.data))
                    continue
                elif opcode is None:
                    continue

                size += len(frame.data)
                if size <= self._max_size:
                    buffer += frame.data
                else:
                    buffer.clear()

                if frame.fin:
                    payload = bytes(buffer) if size <= self._max_size else b""
                    yield InboundMessage(opcode, payload, size)
                    opcode = None
                    buffer.clear()

            if protocol.parser_exc is not None:
                raise TransportError(
                    message=f"protocol error: {protocol.parser_exc}",
                    details={"peer": self.peer},
                ) from protocol.parser_exc

            try:
                data = await self._stream.reader.read(self._stream.chunk_size)
            except OSError as e:
                raise TransportError(
                    message=f"read failed: {e}",
                    details={"peer": self.peer},
                ) from e

            if not data:
                protocol.receive_eof()
                self._stream.flush()
                return

            protocol.receive_data(data)
            frames = [e for e in protocol.events_received() if isinstance(e, Frame)]
            self._stream.flush()


class FrameWriter:
    """
    Write half of a WebSocket connection.

    Must not be driven from two places at once; the server keeps it in a
    single-owner slot guarded by a lock.
    """

    def __init__(self, stream: WebSocketStream) -> None:
        self._stream = stream
        self._closed = False

    @property
    def peer(self) -> str:
        return self._stream.peer

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, data: bytes) -> None:
        """
        Send one binary frame.

        Raises:
            TransportError: If the connection is no longer writable.
        """
        if self._closed or self._stream.writer.is_closing():
            raise TransportError(
                message="send failed: connection is closed",
                error_code=ErrorCodes.SEND_FAILED,
                details={"peer": self.peer},
            )
        try:
            self._stream.protocol.send_binary(data)
        except InvalidState as e:
            raise TransportError(
                message=f"send failed: {e}",
                error_code=ErrorCodes.SEND_FAILED,
                details={"peer": self.peer},
            ) from e
        self._stream.flush()
        try:
            await self._stream.writer.drain()
        except OSError as e:
            raise TransportError(
                message=f"send failed: {e}",
                error_code=ErrorCodes.SEND_FAILED,
                details={"peer": self.peer},
            ) from e

    async def close(
        self,
        code: int = CloseCode.GOING_AWAY,
        reason: str = "",
    ) -> None:
        """Send a close frame if still open, then close the TCP connection."""
        if self._closed:
            return
        self._closed = True

        protocol = self._stream.protocol
        if protocol.state is State.OPEN:
            protocol.send_close(code, reason)
            self._stream.flush()

        writer = self._stream.writer
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Connection to {self.peer} closed with error: {e}")


__all__ = [
    "InboundMessage",
    "WebSocketStream",
    "FrameReader",
    "FrameWriter",
    "accept_websocket",
    "describe_peer",
]
