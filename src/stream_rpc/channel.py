"""Broadcast channels for notifications and uncaught errors.

A channel is an ordered list of synchronous listeners. Emitting calls each
listener in registration order; a listener that raises is logged and the
remaining listeners still run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], Any]


class Channel(Generic[T]):
    """Multi-subscriber observer list with explicit unsubscribe and clear."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener[T]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        """Add a listener.

        Returns:
            Unsubscribe function
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, payload: T) -> int:
        """Deliver ``payload`` to every listener. Returns how many were called."""
        # Copy so listeners may unsubscribe while being notified
        called = 0
        for listener in list(self._listeners):
            if listener not in self._listeners:
                continue
            called += 1
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Error in {self.name} listener")
        return called

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
