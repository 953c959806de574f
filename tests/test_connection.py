"""
Tests for the WebSocket read half: reassembly, size tracking, control frames.

Frames are fed through an in-memory StreamReader into a server protocol that
is already open, so no sockets are involved.
"""
from __future__ import annotations

import asyncio
from typing import List

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from websockets.frames import Frame, Opcode
from websockets.protocol import SEND_EOF, State
from websockets.server import ServerProtocol

from relay.connection import InboundMessage, WebSocketStream
from relay.exceptions import TransportError


class FakeWriter:
    """Collects what the protocol sends back to the peer."""

    def __init__(self) -> None:
        self.written = bytearray()
        self.eof = False

    def write(self, data: bytes) -> None:
        self.written += data

    def can_write_eof(self) -> bool:
        return True

    def write_eof(self) -> None:
        self.eof = True

    def is_closing(self) -> bool:
        return False


def client_frame(opcode: Opcode, data: bytes, fin: bool = True) -> bytes:
    return Frame(opcode, data, fin).serialize(mask=True)


def fragments(payload: bytes, cuts: List[int]) -> bytes:
    points = sorted({c for c in cuts if 0 < c < len(payload)})
    pieces = [payload[i:j] for i, j in zip([0] + points, points + [len(payload)])]
    wire = bytearray()
    for index, piece in enumerate(pieces):
        opcode = Opcode.BINARY if index == 0 else Opcode.CONT
        wire += client_frame(opcode, piece, fin=index == len(pieces) - 1)
    return bytes(wire)


async def read_all(wire: bytes, max_size: int, writer: FakeWriter = None) -> List[InboundMessage]:
    reader = asyncio.StreamReader()
    reader.feed_data(wire)
    reader.feed_eof()
    protocol = ServerProtocol(state=State.OPEN)
    stream = WebSocketStream(protocol, reader, writer or FakeWriter(), "test:1", chunk_size=7)
    frame_reader, _ = stream.split(max_size)
    return [message async for message in frame_reader]


class TestFrameReader:
    """Tests for FrameReader.messages."""

    @pytest.mark.asyncio
    async def test_text_and_binary(self):
        wire = client_frame(Opcode.TEXT, b"hi") + client_frame(Opcode.BINARY, b"\x00\x01")
        received = await read_all(wire, 1024)
        assert [(m.opcode, m.payload, m.size) for m in received] == [
            (Opcode.TEXT, b"hi", 2),
            (Opcode.BINARY, b"\x00\x01", 2),
        ]

    @pytest.mark.asyncio
    async def test_limit_is_inclusive(self):
        wire = client_frame(Opcode.BINARY, b"a" * 16) + client_frame(Opcode.BINARY, b"b" * 17)
        received = await read_all(wire, 16)
        assert received[0].payload == b"a" * 16
        assert received[1].payload == b""
        assert received[1].size == 17

    @pytest.mark.asyncio
    async def test_ping_yielded_and_answered(self):
        writer = FakeWriter()
        wire = client_frame(Opcode.PING, b"beat") + client_frame(Opcode.BINARY, b"x")
        received = await read_all(wire, 1024, writer)

        assert [m.opcode for m in received] == [Opcode.PING, Opcode.BINARY]
        # Unmasked pong from the server carrying the ping payload
        assert writer.written.startswith(bytes([0x8A, 4]) + b"beat")

    @pytest.mark.asyncio
    async def test_close_frame_echoed(self):
        writer = FakeWriter()
        wire = client_frame(Opcode.CLOSE, b"\x03\xe8")
        received = await read_all(wire, 1024, writer)

        assert received[0].opcode is Opcode.CLOSE
        assert writer.written[0] == 0x88
        assert writer.eof

    @pytest.mark.asyncio
    async def test_unmasked_frame_is_protocol_error(self):
        wire = Frame(Opcode.BINARY, b"x").serialize(mask=False)
        with pytest.raises(TransportError):
            await read_all(wire, 1024)

    @pytest.mark.asyncio
    async def test_eof_ends_iteration(self):
        assert await read_all(b"", 1024) == []


class TestReassemblyProperties:
    """Property tests for fragmented messages against the size limit."""

    @given(
        payload=st.binary(max_size=200),
        cuts=st.lists(st.integers(min_value=0, max_value=200), max_size=6),
        limit=st.integers(min_value=1, max_value=200),
    )
    @settings(max_examples=100, deadline=None)
    def test_one_message_per_fragment_sequence(self, payload, cuts, limit):
        received = asyncio.run(read_all(fragments(payload, cuts), limit))

        assert len(received) == 1
        message = received[0]
        assert message.opcode is Opcode.BINARY
        assert message.size == len(payload)
        if len(payload) <= limit:
            assert message.payload == payload
        else:
            assert message.payload == b""
