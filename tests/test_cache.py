"""
Tests for the category cache
"""

import pytest

from digibook.models.ledger import Category
from digibook.services.category_cache import CategoryCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CategoryCache(ttl_seconds=30, clock=clock)


class Fetcher:
    """Counts calls and can be told to fail."""

    def __init__(self, names=("Housing",)):
        self.calls = 0
        self.fail = False
        self.names = list(names)

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("store unavailable")
        return [Category(id=i, name=name) for i, name in enumerate(self.names, 1)]


class TestCategoryCache:
    """Tests for TTL, invalidation and stale fallback."""

    @pytest.mark.asyncio
    async def test_fetches_once_within_ttl(self, cache, clock):
        """Test that a fresh value is served without fetching again."""
        fetcher = Fetcher()
        await cache.get(fetcher)
        clock.now += 29
        categories = await cache.get(fetcher)
        assert fetcher.calls == 1
        assert [c.name for c in categories] == ["Housing"]

    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self, cache, clock):
        """Test that an expired value is refreshed."""
        fetcher = Fetcher()
        await cache.get(fetcher)
        clock.now += 30
        await cache.get(fetcher)
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_fetch(self, cache):
        """Test that invalidate drops the value."""
        fetcher = Fetcher()
        await cache.get(fetcher)
        cache.invalidate()
        assert not cache.is_valid()
        await cache.get(fetcher)
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_serves_stale_on_error(self, cache, clock):
        """Test that a failed refresh falls back to the last value."""
        fetcher = Fetcher()
        await cache.get(fetcher)
        clock.now += 60
        fetcher.fail = True
        categories = await cache.get(fetcher)
        assert [c.name for c in categories] == ["Housing"]
        assert cache.get_stats()["fetch_errors"] == 1

    @pytest.mark.asyncio
    async def test_error_without_value_propagates(self, cache):
        """Test that a failed first fetch raises."""
        fetcher = Fetcher()
        fetcher.fail = True
        with pytest.raises(ConnectionError):
            await cache.get(fetcher)

    @pytest.mark.asyncio
    async def test_returned_list_is_a_copy(self, cache):
        """Test that callers cannot mutate the cached list."""
        fetcher = Fetcher()
        categories = await cache.get(fetcher)
        categories.clear()
        assert len(await cache.get(fetcher)) == 1

    def test_listeners(self, cache):
        """Test that listeners hear set and invalidate, and can unsubscribe."""
        seen = []
        remove = cache.add_listener(lambda action, value: seen.append(action))
        cache.set([Category(name="Housing")])
        cache.invalidate()
        remove()
        cache.set([])
        assert seen == ["set", "invalidate"]

    def test_failing_listener_does_not_block_others(self, cache):
        """Test that one broken listener is skipped."""
        seen = []

        def broken(action, value):
            raise RuntimeError("boom")

        cache.add_listener(broken)
        cache.add_listener(lambda action, value: seen.append(action))
        cache.set([])
        assert seen == ["set"]

    @pytest.mark.asyncio
    async def test_stats(self, cache, clock):
        """Test hit, miss and age counters."""
        fetcher = Fetcher(names=("Housing", "Food"))
        await cache.get(fetcher)
        clock.now += 5
        await cache.get(fetcher)
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 2
        assert stats["age_seconds"] == 5
        assert stats["ttl_seconds"] == 30


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
