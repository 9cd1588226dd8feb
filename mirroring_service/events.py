"""
Event Emitter — Synchronous listener registry.

Used by the service for connection lifecycle events and by drives for
error reporting. Listeners run on the emitting thread, in registration
order.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal on/off/emit event registry."""

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)
        self._listeners_lock = threading.Lock()

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener. Returns it so it can be used as a decorator."""
        with self._listeners_lock:
            self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        with self._listeners_lock:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener for event.

        Returns True if at least one listener was registered. Exceptions
        raised by listeners propagate to the emitter.
        """
        with self._listeners_lock:
            listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            listener(*args)
        return bool(listeners)
