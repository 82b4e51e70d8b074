"""
Ledger Event Bus

Derivations and any UI layer subscribe here instead of polling the store.
The command layer publishes after a transaction commits (or after an
optimistic change is applied or rolled back), never from inside one.

Handlers run synchronously in subscription order. They must not issue
writes while being notified; a failing handler is logged and skipped so
one bad subscriber cannot block the others.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any, NamedTuple

import structlog

from digibook.models.ledger import utc_now


logger = structlog.get_logger(__name__)

LEDGER_CHANGED = "ledger_changed"
LEDGER_OPTIMISTIC = "ledger_optimistic"
LEDGER_ROLLED_BACK = "ledger_rolled_back"
PAYMENT_APPLIED = "payment_applied"
CATEGORIES_CHANGED = "categories_changed"


class Event(NamedTuple):
    name: str
    ts: datetime
    payload: dict[str, Any]


Handler = Callable[[Event], Any]


class EventBus:
    def __init__(self):
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        self._subscribers.setdefault(name, []).append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(name, handler)

        return unsubscribe

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, name: str, payload: dict[str, Any] | None = None) -> list[Any]:
        """Notify every handler of name; returns their results in order."""
        handlers = list(self._subscribers.get(name, []))
        if not handlers:
            return []

        event = Event(name=name, ts=utc_now(), payload=payload or {})
        results = []
        for handler in handlers:
            try:
                results.append(handler(event))
            except Exception as e:
                logger.error("event_handler_failed", event_name=name, error=str(e))
        return results

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, []))
