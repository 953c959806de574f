"""
WSRelay Host Events

Notifications the relay emits to its host application. Delivery is
fire-and-forget: an emitter that raises is logged and otherwise ignored, so a
misbehaving host can never stall the acceptor or reader tasks.
"""
from __future__ import annotations

import logging
import queue
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class RelayEvent(Enum):
    """Host notification event names."""
    CONNECTION = "ws-connection"
    MESSAGE = "ws-message"
    CLOSE = "ws-close"


@dataclass
class HostEvent:
    """
    A single notification to the host.

    Attributes:
        event: Event kind
        data: Transport-encoded payload (message events only)
        timestamp: Emission time (Unix milliseconds)
    """
    event: RelayEvent
    data: Optional[str] = None
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: Dict[str, Any] = {
            "event": self.event.value,
            "timestamp": self.timestamp,
        }
        if self.data is not None:
            result["payload"] = {"data": self.data}
        return result


# Anything callable with a HostEvent can receive notifications
EventEmitter = Callable[[HostEvent], None]


def emit_safely(emitter: Optional[EventEmitter], event: HostEvent) -> None:
    """Deliver an event best-effort; emitter failures are logged, not raised."""
    if emitter is None:
        return
    try:
        emitter(event)
    except Exception as e:
        logger.warning(f"Host emitter failed for {event.event.value}: {e}")


class CallbackEmitter:
    """
    Fan an event out to per-kind callbacks.

    Example:
        >>> emitter = CallbackEmitter()
        >>> emitter.on(RelayEvent.MESSAGE, lambda e: print(e.data))
        >>> server = RelayServer(emitter=emitter)
    """

    def __init__(self) -> None:
        self._callbacks: Dict[RelayEvent, List[EventEmitter]] = {}

    def on(self, kind: RelayEvent, callback: EventEmitter) -> None:
        self._callbacks.setdefault(kind, []).append(callback)

    def __call__(self, event: HostEvent) -> None:
        for callback in list(self._callbacks.get(event.event, [])):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Callback for {event.event.value} failed: {e}")


class QueueEmitter:
    """
    Collect events in a thread-safe queue for hosts that poll.

    Safe to drain from a thread other than the one running the relay.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "queue.Queue[HostEvent]" = queue.Queue(maxsize=maxsize)

    def __call__(self, event: HostEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(f"Event queue full, dropping {event.event.value}")

    def get(self, timeout: Optional[float] = None) -> HostEvent:
        """Block until the next event arrives; raises queue.Empty on timeout."""
        return self._queue.get(timeout=timeout)

    def drain(self) -> List[HostEvent]:
        """Return every queued event without blocking."""
        events: List[HostEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


__all__ = [
    "RelayEvent",
    "HostEvent",
    "EventEmitter",
    "emit_safely",
    "CallbackEmitter",
    "QueueEmitter",
]
