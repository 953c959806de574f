"""
WSRelay Exception Classes

This module defines the exception hierarchy for the relay.
All custom exceptions inherit from the RelayError base class.

Exception Hierarchy:
    RelayError (base)
    ├── BindError - Listening socket could not be acquired
    ├── AddressError - Local network address could not be resolved
    ├── HandshakeError - WebSocket upgrade failed on a single connection
    ├── TransportError - Write to the connected peer failed
    ├── NoPeerError - Send attempted with no peer connected
    └── PayloadError - Transport-encoded payload could not be decoded
"""
from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """
    Base exception class for all relay errors.

    Attributes:
        message: Human-readable error description
        error_code: Optional error code for programmatic handling
        details: Optional dictionary with additional error context
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class BindError(RelayError):
    """
    Exception raised when no listening socket could be acquired.

    Raised by listener acquisition after every attempt has failed. The
    message is the final attempt's error.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        port: int | None = None,
        attempts: int | None = None
    ) -> None:
        details = details or {}
        if port is not None:
            details["port"] = port
        if attempts is not None:
            details["attempts"] = attempts
        super().__init__(message, error_code, details)
        self.port = port
        self.attempts = attempts


class AddressError(RelayError):
    """Exception raised when the local network address cannot be resolved."""


class HandshakeError(RelayError):
    """
    Exception raised when the WebSocket opening handshake fails.

    The acceptor absorbs these; they never reach the host.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        peer: str | None = None
    ) -> None:
        details = details or {}
        if peer:
            details["peer"] = peer
        super().__init__(message, error_code, details)
        self.peer = peer


class TransportError(RelayError):
    """Exception raised when writing a frame to the peer fails."""


class NoPeerError(RelayError):
    """
    Exception raised by send when the connection slot is empty.

    This is an expected condition, not a fault.
    """

    def __init__(
        self,
        message: str = "no peer connected",
        error_code: str | None = None,
        details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, error_code or ErrorCodes.NO_PEER_CONNECTED, details)


class PayloadError(RelayError):
    """Exception raised for payloads that are not valid transport encoding."""


class ErrorCodes:
    """Standard error codes for relay exceptions."""

    # Lifecycle errors (R1xxx)
    BIND_FAILED = "R1001"
    ADDRESS_UNAVAILABLE = "R1002"
    INVALID_PORT = "R1003"

    # Connection errors (R2xxx)
    HANDSHAKE_FAILED = "R2001"
    SEND_FAILED = "R2002"
    NO_PEER_CONNECTED = "R2003"

    # Payload errors (R3xxx)
    PAYLOAD_INVALID = "R3001"


__all__ = [
    "RelayError",
    "BindError",
    "AddressError",
    "HandshakeError",
    "TransportError",
    "NoPeerError",
    "PayloadError",
    "ErrorCodes",
]
