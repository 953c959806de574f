"""
WSRelay Listener Acquisition

Binds the listening socket with address reuse enabled and retries on
failure. A previous listener on the same port may linger for a short
window after being closed; the retry absorbs that window instead of
surfacing a spurious failure to the caller.
"""
from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket

from relay.config import BIND_ATTEMPTS, BIND_RETRY_DELAY, LISTEN_BACKLOG
from relay.exceptions import BindError, ErrorCodes


logger = logging.getLogger(__name__)


def try_bind(host: str, port: int, backlog: int = LISTEN_BACKLOG) -> socket.socket:
    """
    Make a single attempt at creating a non-blocking listening socket.

    Raises:
        BindError: Describing the step that failed.
    """
    try:
        address = str(ipaddress.IPv4Address(host))
    except ValueError as e:
        raise BindError(
            message=f"invalid address: {host}:{port} ({e})",
            error_code=ErrorCodes.BIND_FAILED,
            port=port,
        ) from e

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    except OSError as e:
        raise BindError(
            message=f"failed to create socket: {e}",
            error_code=ErrorCodes.BIND_FAILED,
            port=port,
        ) from e

    step = "set SO_REUSEADDR"
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        step = "bind"
        sock.bind((address, port))
        step = "listen"
        sock.listen(backlog)
        step = "set nonblocking"
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise BindError(
            message=f"failed to {step}: {e}",
            error_code=ErrorCodes.BIND_FAILED,
            port=port,
        ) from e

    return sock


async def bind_with_retry(
    port: int,
    max_attempts: int = BIND_ATTEMPTS,
    delay: float = BIND_RETRY_DELAY,
    host: str = "0.0.0.0",
    backlog: int = LISTEN_BACKLOG,
) -> socket.socket:
    """
    Bind a listening socket, retrying up to max_attempts times in total.

    Args:
        port: Port to bind; 0 selects an ephemeral port.
        max_attempts: Total attempts before giving up.
        delay: Seconds to sleep between attempts.
        host: Interface to bind, all interfaces by default.
        backlog: Listen backlog.

    Returns:
        A listening, non-blocking socket.

    Raises:
        BindError: Carrying the final attempt's error once all attempts fail.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BindError | None = None
    for attempt in range(max_attempts):
        if attempt > 0:
            await asyncio.sleep(delay)
        try:
            sock = try_bind(host, port, backlog)
        except BindError as e:
            logger.debug(f"Bind attempt {attempt + 1}/{max_attempts} on port {port} failed: {e.message}")
            last_error = e
            continue
        if attempt > 0:
            logger.info(f"Bound port {port} after {attempt + 1} attempts")
        return sock

    last_error.attempts = max_attempts
    last_error.details["attempts"] = max_attempts
    raise last_error


__all__ = ["try_bind", "bind_with_retry"]
