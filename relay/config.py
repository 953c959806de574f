"""
WSRelay Configuration
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

DEFAULT_PORT = 4040
MAX_MESSAGE_SIZE = 65536
BIND_ATTEMPTS = 5
BIND_RETRY_DELAY = 0.2
LISTEN_BACKLOG = 128


@dataclass
class RelayConfig:
    """
    Relay server configuration.

    Attributes:
        port: Default listening port (0 picks an ephemeral port)
        bind_host: Interface the listener binds to
        max_message_size: Inbound messages above this many bytes are dropped
        bind_attempts: Total bind attempts before start fails
        bind_retry_delay: Seconds to wait between bind attempts
        backlog: Listen backlog
        handshake_timeout: Seconds allowed for the WebSocket upgrade
        max_buffer_size: Hard cap on a buffered inbound message; a peer
            exceeding it is disconnected
        read_chunk_size: Bytes requested per socket read
    """
    port: int = DEFAULT_PORT
    bind_host: str = "0.0.0.0"
    max_message_size: int = MAX_MESSAGE_SIZE
    bind_attempts: int = BIND_ATTEMPTS
    bind_retry_delay: float = BIND_RETRY_DELAY
    backlog: int = LISTEN_BACKLOG
    handshake_timeout: float = 10.0
    max_buffer_size: int = 64 * 1024 * 1024
    read_chunk_size: int = 65536

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ValueError("port must be between 0 and 65535")
        if self.max_message_size <= 0:
            raise ValueError("max_message_size must be positive")
        if self.bind_attempts < 1:
            raise ValueError("bind_attempts must be at least 1")
        if self.bind_retry_delay < 0:
            raise ValueError("bind_retry_delay must not be negative")
        if self.backlog < 1:
            raise ValueError("backlog must be at least 1")
        if self.handshake_timeout <= 0:
            raise ValueError("handshake_timeout must be positive")
        if self.max_buffer_size < self.max_message_size:
            raise ValueError("max_buffer_size must be at least max_message_size")
        if self.read_chunk_size <= 0:
            raise ValueError("read_chunk_size must be positive")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelayConfig":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @classmethod
    def from_yaml(cls, file_path: Union[str, Path]) -> "RelayConfig":
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Relay config file not found: {file_path}")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data.get("relay", {}))

    @classmethod
    def from_env(
        cls,
        base: Optional["RelayConfig"] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "RelayConfig":
        """Overlay WSRELAY_* environment variables on a base config."""
        base = base or cls()
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        if "WSRELAY_PORT" in environ:
            overrides["port"] = int(environ["WSRELAY_PORT"])
        if "WSRELAY_BIND_HOST" in environ:
            overrides["bind_host"] = environ["WSRELAY_BIND_HOST"]
        if "WSRELAY_MAX_MESSAGE_SIZE" in environ:
            overrides["max_message_size"] = int(environ["WSRELAY_MAX_MESSAGE_SIZE"])
        return replace(base, **overrides)

    def to_dict(self) -> dict:
        return asdict(self)


__all__ = [
    "RelayConfig",
    "DEFAULT_PORT",
    "MAX_MESSAGE_SIZE",
    "BIND_ATTEMPTS",
    "BIND_RETRY_DELAY",
    "LISTEN_BACKLOG",
]
