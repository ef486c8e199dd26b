"""Tests for the bounded TTL cache."""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from context_fusion.services.context_cache import MISSING, ContextCache, estimate_size
from tests.conftest import FakeClock


class TestBasicCacheOperations:
    """Test basic set/get operations."""

    def test_set_get(self, cache: ContextCache):
        cache.set("key", {"data": "value"})

        assert cache.get("key") == {"data": "value"}

    def test_get_missing_returns_default(self, cache: ContextCache):
        assert cache.get("nope") is None
        assert cache.get("nope", MISSING) is MISSING

    def test_empty_key_is_accepted(self, cache: ContextCache):
        assert cache.get("") is None
        cache.set("", 1)
        assert cache.get("") == 1

    def test_stored_none_distinguished_from_absence(self, cache: ContextCache):
        cache.set("empty", None)

        assert cache.get("empty", MISSING) is None
        assert cache.get("absent", MISSING) is MISSING

        stats = cache.get_stats()
        assert stats.total_hits == 1
        assert stats.total_misses == 1
        assert stats.hit_rate == pytest.approx(0.5)

    def test_set_overwrites_existing(self, cache: ContextCache):
        cache.set("key", "first")
        cache.set("key", "second")

        assert cache.get("key") == "second"
        assert len(cache) == 1

    def test_remove_and_clear(self, cache: ContextCache):
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.remove("a") is True
        assert cache.remove("a") is False
        cache.clear()
        assert cache.get_keys() == set()
        assert cache.memory_usage_bytes == 0

    def test_invalidate_pattern(self, cache: ContextCache):
        cache.set("score:1", 1)
        cache.set("score:2", 2)
        cache.set("embedding:1", 3)

        assert cache.invalidate("score:") == 2
        assert cache.get_keys() == {"embedding:1"}
        assert cache.invalidate() == 1

    def test_update_metadata(self, cache: ContextCache):
        cache.set("key", 1, metadata={"a": 1})

        assert cache.update_metadata("key", {"b": 2}) is True
        assert cache.get_entry("key").metadata == {"a": 1, "b": 2}
        assert cache.update_metadata("missing", {"b": 2}) is False


class TestCacheTTL:
    """Test TTL expiration."""

    def test_contains_true_then_false_after_ttl(self, cache: ContextCache, clock: FakeClock):
        cache.set("key", "value", ttl=10)
        assert cache.contains("key") is True

        clock.advance(10.5)

        assert cache.contains("key") is False
        assert cache.get("key", MISSING) is MISSING

    def test_non_positive_ttl_uses_default(self, cache: ContextCache, clock: FakeClock):
        cache.set("zero", 1, ttl=0)
        cache.set("negative", 1, ttl=-5)

        clock.advance(59)
        assert cache.contains("zero")
        assert cache.contains("negative")

        clock.advance(2)
        assert not cache.contains("zero")
        assert not cache.contains("negative")

    def test_extend_ttl_adds_to_expiry(self, cache: ContextCache, clock: FakeClock):
        cache.set("key", "value", ttl=10)
        clock.advance(8)

        assert cache.extend_ttl("key", 10) is True

        clock.advance(10)
        assert cache.contains("key") is True
        clock.advance(3)
        assert cache.contains("key") is False

    def test_extend_ttl_does_not_revive_expired(self, cache: ContextCache, clock: FakeClock):
        cache.set("key", "value", ttl=1)
        clock.advance(2)

        assert cache.extend_ttl("key", 100) is False
        assert cache.contains("key") is False

    def test_contains_removes_expired_entry(self, cache: ContextCache, clock: FakeClock):
        cache.set("key", "value", ttl=1)
        clock.advance(2)

        cache.contains("key")

        assert len(cache) == 0
        assert cache.get_stats().expirations == 1

    def test_purge_expired(self, cache: ContextCache, clock: FakeClock):
        cache.set("short", 1, ttl=1)
        cache.set("long", 2, ttl=100)
        clock.advance(5)

        assert cache.purge_expired() == 1
        assert cache.get_keys() == {"long"}

    def test_get_keys_excludes_expired(self, cache: ContextCache, clock: FakeClock):
        cache.set("short", 1, ttl=1)
        cache.set("long", 2, ttl=100)
        clock.advance(5)

        assert cache.get_keys() == {"long"}

    def test_get_keys_returns_builtin_set(self, cache: ContextCache):
        cache.set("a", 1)

        keys = cache.get_keys()

        assert isinstance(keys, set)
        keys.add("b")
        assert cache.get_keys() == {"a"}


class TestCacheEviction:
    """Test LRU eviction and bounds."""

    def test_lru_read_protects_entry(self, clock: FakeClock):
        cache = ContextCache(max_entries=3, clock=clock)
        cache.set("A", 1)
        cache.set("B", 2)
        cache.set("C", 3)

        cache.get("A")
        cache.set("D", 4)

        assert cache.get_keys() == {"A", "C", "D"}

    def test_lru_set_counts_as_access(self, clock: FakeClock):
        cache = ContextCache(max_entries=3, clock=clock)
        cache.set("A", 1)
        cache.set("B", 2)
        cache.set("C", 3)

        cache.set("A", 10)
        cache.set("D", 4)

        assert cache.get_keys() == {"A", "C", "D"}

    def test_contains_does_not_refresh_recency(self, clock: FakeClock):
        cache = ContextCache(max_entries=3, clock=clock)
        cache.set("A", 1)
        cache.set("B", 2)
        cache.set("C", 3)

        assert cache.contains("A")
        cache.set("D", 4)

        assert "A" not in cache.get_keys()

    def test_expired_entries_purged_before_live_eviction(self, clock: FakeClock):
        cache = ContextCache(max_entries=3, clock=clock)
        cache.set("A", 1, ttl=100)
        cache.set("B", 2, ttl=1)
        cache.set("C", 3, ttl=100)
        clock.advance(5)

        cache.set("D", 4)

        assert cache.get_keys() == {"A", "C", "D"}
        assert cache.get_stats().evictions == 0

    def test_entry_bound_holds_after_every_set(self, clock: FakeClock):
        cache = ContextCache(max_entries=5, clock=clock)
        for i in range(50):
            cache.set(f"k{i}", i)
            if i % 3 == 0:
                cache.get(f"k{i // 2}")
            assert len(cache) <= 5

    def test_memory_bound_evicts_lru(self, clock: FakeClock):
        value = "x" * 1000
        entry_size = ContextCache(clock=clock)
        entry_size.set("sample", value)
        budget = entry_size.memory_usage_bytes * 3 + 10

        cache = ContextCache(max_entries=100, max_memory_bytes=budget, clock=clock)
        for i in range(10):
            cache.set(f"k{i}", value)
            assert cache.memory_usage_bytes <= budget

        assert len(cache) == 3
        assert cache.get_keys() == {"k7", "k8", "k9"}

    def test_oversized_entry_is_not_retained(self, clock: FakeClock):
        cache = ContextCache(max_entries=10, max_memory_bytes=2000, clock=clock)
        cache.set("small", 1)

        cache.set("huge", "x" * 10_000)

        assert cache.contains("small")
        assert not cache.contains("huge")
        assert cache.memory_usage_bytes <= 2000

    def test_stats(self, clock: FakeClock):
        cache = ContextCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("c")
        cache.get("a")

        stats = cache.get_stats()
        assert stats.total_entries == 2
        assert stats.evictions == 1
        assert stats.total_hits == 1
        assert stats.total_misses == 1
        assert stats.max_entries == 2
        assert stats.memory_usage_bytes > 0


class TestCacheConcurrency:
    """Test bounds under concurrent callers."""

    def test_bounds_hold_under_threaded_access(self, clock: FakeClock):
        value = "x" * 200
        sizing = ContextCache(clock=clock)
        sizing.set("k0", value)
        budget = sizing.memory_usage_bytes * 4 + 10

        cache = ContextCache(max_entries=6, max_memory_bytes=budget, clock=clock)
        violations: list[tuple[int, int]] = []

        def worker(worker_id: int) -> None:
            for i in range(300):
                key = f"k{(worker_id * 7 + i) % 20}"
                if i % 5 == 0:
                    cache.remove(key)
                elif i % 2 == 0:
                    cache.get(key)
                else:
                    cache.set(key, value if i % 3 else i)
                with cache._lock:
                    if len(cache) > 6 or cache.memory_usage_bytes > budget:
                        violations.append((len(cache), cache.memory_usage_bytes))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(8)))

        assert violations == []
        assert len(cache) <= 6
        assert cache.memory_usage_bytes <= budget
        assert cache.memory_usage_bytes == sum(
            entry.size_bytes for entry in cache._entries.values()
        )


class TestEstimateSize:
    def test_nested_structures_grow_estimate(self):
        small = estimate_size({"a": 1})
        large = estimate_size({"a": ["x" * 100, {"b": "y" * 100}]})

        assert large > small

    def test_shared_references_counted_once(self):
        shared = "z" * 500
        assert estimate_size([shared, shared]) < estimate_size([shared, "w" * 500])


@pytest.mark.asyncio
class TestCacheCleanup:
    """Test background expiry sweep."""

    async def test_background_sweep_removes_expired(self, clock: FakeClock):
        cache = ContextCache(default_ttl_seconds=1, cleanup_interval_seconds=0.01, clock=clock)
        try:
            cache.set("key", "value")
            clock.advance(5)

            await asyncio.sleep(0.05)

            assert len(cache) == 0
        finally:
            await cache.close()

    async def test_close_without_task(self, cache: ContextCache):
        await cache.close()
        assert cache._cleanup_task is None
