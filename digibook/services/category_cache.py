"""
Category Cache

A single-entry, TTL-bound cache for the category list. It sits between
derivations and the store so rendering a listing does not re-read every
category each time.

Every write path that touches categories calls invalidate(). Listeners
are told about set() and invalidate() synchronously.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import structlog

from digibook.config import get_settings
from digibook.models.ledger import Category


logger = structlog.get_logger(__name__)

Listener = Callable[[str, Optional[list[Category]]], Any]


class CategoryCache:
    """
    TTL cache for categories.

    Usage:
        categories = await cache.get(fetch_categories)
        cache.invalidate()
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds if ttl_seconds is not None else get_settings().app.category_cache_ttl_seconds
        self._clock = clock
        self._value: Optional[list[Category]] = None
        self._stored_at: Optional[float] = None
        self._listeners: list[Listener] = []
        self._hits = 0
        self._misses = 0
        self._fetch_errors = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def is_valid(self) -> bool:
        """True if a value is cached and younger than the TTL."""
        if self._value is None or self._stored_at is None:
            return False
        return self._clock() - self._stored_at < self._ttl

    async def get(
        self,
        fetcher: Callable[[], Awaitable[list[Category]]],
    ) -> list[Category]:
        """
        Return cached categories, fetching when stale.

        On fetch failure stale data is returned if there is any;
        otherwise the fetch error propagates.
        """
        if self.is_valid():
            self._hits += 1
            return list(self._value)

        self._misses += 1
        try:
            categories = await fetcher()
        except Exception as e:
            self._fetch_errors += 1
            if self._value is not None:
                logger.warning(
                    "category_cache_fetch_failed",
                    error=str(e),
                    serving_stale=True,
                    stale_count=len(self._value),
                )
                return list(self._value)
            logger.error("category_cache_fetch_failed", error=str(e), serving_stale=False)
            raise

        self.set(categories)
        return list(categories)

    def set(self, categories: list[Category]) -> None:
        """Store a fresh value and notify listeners."""
        self._value = list(categories)
        self._stored_at = self._clock()
        self._notify("set", self._value)

    def invalidate(self) -> None:
        """Drop the cached value and notify listeners."""
        self._value = None
        self._stored_at = None
        self._notify("invalidate", None)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to set/invalidate. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, action: str, value: Optional[list[Category]]) -> None:
        for listener in list(self._listeners):
            try:
                listener(action, value)
            except Exception as e:
                logger.error("category_cache_listener_failed", action=action, error=str(e))

    def get_stats(self) -> dict[str, Any]:
        """Counters for diagnostics."""
        age = None
        if self._stored_at is not None:
            age = self._clock() - self._stored_at
        return {
            "cached": self._value is not None,
            "valid": self.is_valid(),
            "size": len(self._value) if self._value is not None else 0,
            "age_seconds": age,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "fetch_errors": self._fetch_errors,
            "listeners": len(self._listeners),
        }
