"""
Tests for listener acquisition with bind retry.
"""
import asyncio
import socket

import pytest

from relay.exceptions import BindError, ErrorCodes
from relay.listener import bind_with_retry, try_bind


@pytest.fixture
def occupied_port():
    """A loopback port held by a listening socket without SO_REUSEADDR."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


class TestTryBind:
    """Tests for a single bind attempt."""

    def test_ephemeral_port(self):
        sock = try_bind("127.0.0.1", 0)
        try:
            assert sock.getsockname()[1] > 0
            assert sock.getblocking() is False
            assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR) != 0
        finally:
            sock.close()

    def test_invalid_address(self):
        with pytest.raises(BindError) as exc_info:
            try_bind("not-an-ip", 4040)
        assert "invalid address" in exc_info.value.message
        assert exc_info.value.port == 4040

    def test_port_in_use(self, occupied_port):
        with pytest.raises(BindError) as exc_info:
            try_bind("127.0.0.1", occupied_port)
        assert "failed to bind" in exc_info.value.message
        assert exc_info.value.error_code == ErrorCodes.BIND_FAILED

    def test_rebind_after_close(self):
        """Address reuse lets a closed listener's port be rebound at once."""
        first = try_bind("127.0.0.1", 0)
        port = first.getsockname()[1]
        first.close()
        second = try_bind("127.0.0.1", port)
        second.close()


class TestBindWithRetry:
    """Tests for bind_with_retry."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        sock = await bind_with_retry(0, host="127.0.0.1")
        sock.close()

    @pytest.mark.asyncio
    async def test_exhausts_attempts(self, occupied_port):
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(BindError) as exc_info:
            await bind_with_retry(occupied_port, max_attempts=3, delay=0.05, host="127.0.0.1")

        assert exc_info.value.attempts == 3
        assert exc_info.value.details["attempts"] == 3
        assert "failed to bind" in exc_info.value.message
        # Two sleeps between three attempts
        assert loop.time() - started >= 0.09

    @pytest.mark.asyncio
    async def test_succeeds_once_port_released(self):
        holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        port = holder.getsockname()[1]

        loop = asyncio.get_running_loop()
        loop.call_later(0.1, holder.close)

        sock = await bind_with_retry(port, max_attempts=10, delay=0.05, host="127.0.0.1")
        try:
            assert sock.getsockname()[1] == port
        finally:
            sock.close()

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await bind_with_retry(0, max_attempts=0)
