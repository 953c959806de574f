"""
Pytest configuration and fixtures for WSRelay tests.
"""
from __future__ import annotations

from pathlib import Path

import pytest

from relay.config import RelayConfig
from relay.events import HostEvent


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def fast_config() -> RelayConfig:
    """Config binding loopback on an ephemeral port with short timeouts."""
    return RelayConfig(
        port=0,
        bind_host="127.0.0.1",
        bind_retry_delay=0.05,
        handshake_timeout=2.0,
    )


@pytest.fixture
def events() -> list:
    """List that collects host events in emission order."""
    return []


@pytest.fixture
def collect(events):
    """Emitter appending every HostEvent to ``events``."""
    def emitter(event: HostEvent) -> None:
        events.append(event)
    return emitter
