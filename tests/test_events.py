"""
Tests for the ledger event bus
"""

import pytest

from digibook.events import LEDGER_CHANGED, PAYMENT_APPLIED, EventBus


class TestEventBus:
    """Tests for subscribe, publish and unsubscribe."""

    def test_publish_reaches_subscribers_in_order(self):
        """Test that handlers run in subscription order with the payload."""
        bus = EventBus()
        seen = []
        bus.subscribe(LEDGER_CHANGED, lambda event: seen.append(("a", event.payload["reason"])))
        bus.subscribe(LEDGER_CHANGED, lambda event: seen.append(("b", event.name)))

        bus.publish(LEDGER_CHANGED, {"reason": "commit"})

        assert seen == [("a", "commit"), ("b", LEDGER_CHANGED)]

    def test_topics_are_separate(self):
        """Test that a handler only hears its own topic."""
        bus = EventBus()
        seen = []
        bus.subscribe(PAYMENT_APPLIED, seen.append)
        bus.publish(LEDGER_CHANGED)
        assert seen == []

    def test_unsubscribe(self):
        """Test the returned remover and explicit unsubscribe."""
        bus = EventBus()
        seen = []
        remove = bus.subscribe(LEDGER_CHANGED, seen.append)
        assert bus.subscriber_count(LEDGER_CHANGED) == 1

        remove()
        remove()
        bus.publish(LEDGER_CHANGED)

        assert seen == []
        assert bus.subscriber_count(LEDGER_CHANGED) == 0

    def test_failing_handler_is_skipped(self):
        """Test that one failing handler does not stop the others."""
        bus = EventBus()

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(LEDGER_CHANGED, broken)
        bus.subscribe(LEDGER_CHANGED, lambda event: "ok")

        assert bus.publish(LEDGER_CHANGED) == ["ok"]

    def test_publish_without_subscribers(self):
        """Test that publishing to an empty topic returns nothing."""
        assert EventBus().publish("unknown", {"x": 1}) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
