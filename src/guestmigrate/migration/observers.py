"""
Listener registry for migration notifications.

Observers keeps an ordered set of callbacks and calls each of them
synchronously when notify() is invoked. A listener that raises is logged
and skipped; the remaining listeners still receive the value.

Usage:
    >>> progress = Observers[MigrationProgress]("progress")
    >>> unsubscribe = progress.subscribe(lambda p: print(p.percentage))
    >>> progress.notify(snapshot)
    >>> unsubscribe()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]
Unsubscribe = Callable[[], None]


class Observers(Generic[T]):
    """
    Synchronous fan-out to registered listeners.

    Thread Safety:
        Designed for asyncio code running on one event loop; not thread-safe.
    """

    def __init__(self, channel: str) -> None:
        self._channel = channel
        self._listeners: dict[int, Callable[[T], None]] = {}
        self._next_id = 0

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe:
        """
        Register ``listener`` and return a callable that removes it.

        Calling the returned function more than once is harmless.
        """
        listener_id = self._next_id
        self._next_id += 1
        self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def notify(self, value: T) -> None:
        # Copy so listeners may unsubscribe while being notified.
        for listener in list(self._listeners.values()):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener failed on %s notification", self._channel)


__all__ = [
    "Observers",
    "Listener",
    "Unsubscribe",
]
