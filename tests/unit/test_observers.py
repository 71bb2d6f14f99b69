"""
Unit tests for the Observers listener registry.
"""

from __future__ import annotations

import logging

from guestmigrate.migration.observers import Observers


class TestObservers:
    """Tests for subscribe/notify/unsubscribe."""

    def test_notifies_in_subscription_order(self):
        observers: Observers[int] = Observers("test")
        received: list[tuple[str, int]] = []
        observers.subscribe(lambda v: received.append(("a", v)))
        observers.subscribe(lambda v: received.append(("b", v)))

        observers.notify(1)

        assert received == [("a", 1), ("b", 1)]

    def test_unsubscribe_stops_delivery(self):
        observers: Observers[int] = Observers("test")
        received: list[int] = []
        unsubscribe = observers.subscribe(received.append)

        unsubscribe()
        observers.notify(1)

        assert received == []
        assert observers.listener_count == 0

    def test_unsubscribe_twice_is_harmless(self):
        observers: Observers[int] = Observers("test")
        unsubscribe = observers.subscribe(lambda v: None)

        unsubscribe()
        unsubscribe()

        assert observers.listener_count == 0

    def test_failing_listener_does_not_stop_delivery(self, caplog):
        observers: Observers[int] = Observers("progress")
        received: list[int] = []

        def broken(value: int) -> None:
            raise RuntimeError("boom")

        observers.subscribe(broken)
        observers.subscribe(received.append)

        with caplog.at_level(logging.ERROR, logger="guestmigrate.migration.observers"):
            observers.notify(7)

        assert received == [7]
        assert "progress" in caplog.text

    def test_listener_may_unsubscribe_during_notify(self):
        observers: Observers[int] = Observers("test")
        received: list[int] = []
        unsubscribe = None

        def once(value: int) -> None:
            received.append(value)
            unsubscribe()

        unsubscribe = observers.subscribe(once)
        observers.notify(1)
        observers.notify(2)

        assert received == [1]
