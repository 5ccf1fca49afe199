"""
Unit tests for the cache entry store.
"""

import pytest

from service_caching.app.caching import CacheEngine
from shared.errors import ValidationError
from shared.test_helpers import FakeClock


class TestCacheStore:
    """Test cases for get/set/delete through CacheEngine."""

    @pytest.fixture
    def clock(self):
        """Create a manually advanced clock."""
        return FakeClock()

    @pytest.fixture
    def engine(self, clock):
        """Create CacheEngine with one unbounded-TTL strategy."""
        engine = CacheEngine(clock=clock)
        engine.create_strategy(strategy_id="s1", max_entries=10)
        return engine

    def test_set_and_get(self, engine):
        """Test a basic write followed by a read."""
        assert engine.set("a", {"n": 1}, "s1") is True
        assert engine.get("a", "s1") == {"n": 1}

        stats = engine.get_stats("s1")
        assert stats.sets == 1
        assert stats.hits == 1
        assert stats.current_size == 1
        assert stats.total_size_bytes > 0

    def test_stored_none_is_a_hit(self, engine):
        """A stored None value is distinguishable from absence via lookup."""
        engine.set("nothing", None, "s1")

        entry = engine.lookup("nothing", "s1")
        assert entry is not None
        assert entry.value is None
        assert engine.lookup("absent", "s1") is None

    def test_unknown_strategy(self, engine):
        """Unknown strategies miss on read and refuse writes."""
        assert engine.set("a", 1, "missing") is False
        assert engine.get("a", "missing") is None
        assert engine.get_stats("missing") is None

    def test_disabled_strategy(self, engine):
        """A disabled strategy misses every read and refuses every write."""
        engine.set("a", 1, "s1")
        engine.update_strategy("s1", {"enabled": False})

        assert engine.get("a", "s1") is None
        assert engine.set("b", 2, "s1") is False
        assert engine.get_stats("s1").misses == 1

    def test_invalid_inputs(self, engine):
        """Test validation of keys, TTLs and values."""
        with pytest.raises(ValidationError):
            engine.set("", 1, "s1")
        with pytest.raises(ValidationError):
            engine.set(42, 1, "s1")
        with pytest.raises(ValidationError):
            engine.set("a", 1, "s1", ttl_ms=-1)
        with pytest.raises(ValidationError):
            engine.set("a", object(), "s1")
        with pytest.raises(ValidationError):
            engine.set("a", 1, "s1", tags="user:42")

        assert engine.get_stats("s1").current_size == 0

    def test_ttl_expiry_on_read(self, engine, clock):
        """An expired entry reads as absent and leaves the live count."""
        engine.set("x", "v", "s1", ttl_ms=10)
        assert engine.get_stats("s1").current_size == 1

        clock.advance_ms(11)

        assert engine.get("x", "s1") is None
        stats = engine.get_stats("s1")
        assert stats.current_size == 0
        assert stats.expirations == 1
        assert stats.misses == 1

    def test_ttl_boundary(self, engine, clock):
        """An entry is expired exactly at expires_at."""
        engine.set("x", "v", "s1", ttl_ms=10000)

        clock.advance_ms(9000)
        assert engine.get("x", "s1") == "v"

        clock.advance_ms(1000)
        assert engine.get("x", "s1") is None

    def test_strategy_default_ttl(self, clock):
        """Entries inherit the strategy default TTL; zero disables expiry."""
        engine = CacheEngine(clock=clock)
        engine.create_strategy(strategy_id="ttl", max_entries=5, default_ttl_ms=1000)

        engine.set("inherits", 1, "ttl")
        engine.set("forever", 2, "ttl", ttl_ms=0)
        clock.advance_ms(5000)

        assert engine.get("inherits", "ttl") is None
        assert engine.get("forever", "ttl") == 2

    def test_hits_plus_misses_equals_gets(self, engine, clock):
        """Every get is counted exactly once as a hit or a miss."""
        engine.set("a", 1, "s1")
        engine.set("b", 2, "s1", ttl_ms=5)
        calls = 0
        for key in ("a", "b", "c", "a"):
            engine.get(key, "s1")
            calls += 1
        clock.advance_ms(10)
        for key in ("a", "b"):
            engine.get(key, "s1")
            calls += 1

        stats = engine.get_stats("s1")
        assert stats.hits + stats.misses == calls
        assert stats.hits == 4

    def test_overwrite(self, engine, clock):
        """Overwriting replaces the entry without changing the live count."""
        engine.set("a", 1, "s1", tags=["old"])
        engine.get("a", "s1")
        clock.advance_ms(100)

        assert engine.set("a", 2, "s1", tags=["new"]) is True

        entry = engine.lookup("a", "s1")
        assert entry.value == 2
        assert entry.tags == {"new"}
        assert entry.hit_count == 1
        stats = engine.get_stats("s1")
        assert stats.current_size == 1
        assert stats.sets == 2

    def test_delete(self, engine):
        """Deleting a live entry returns True."""
        engine.set("a", 1, "s1")

        assert engine.delete("a", "s1") is True
        assert engine.get("a", "s1") is None
        stats = engine.get_stats("s1")
        assert stats.deletes == 1
        assert stats.current_size == 0

    def test_delete_is_idempotent(self, engine):
        """Deleting an absent key returns False and leaves the count alone."""
        engine.set("a", 1, "s1")

        assert engine.delete("missing", "s1") is False
        assert engine.delete("a", "missing") is False
        assert engine.delete("a", "s1") is True
        assert engine.delete("a", "s1") is False
        assert engine.get_stats("s1").current_size == 0

    def test_delete_expired_entry(self, engine, clock):
        """An expired entry is swept but reported as not deleted."""
        engine.set("a", 1, "s1", ttl_ms=5)
        clock.advance_ms(5)

        assert engine.delete("a", "s1") is False
        stats = engine.get_stats("s1")
        assert stats.current_size == 0
        assert stats.expirations == 1
        assert stats.deletes == 0

    def test_purge_expired(self, engine, clock):
        """Purging removes only expired entries."""
        engine.create_strategy(strategy_id="s2", max_entries=5)
        engine.set("a", 1, "s1", ttl_ms=5)
        engine.set("b", 2, "s1")
        engine.set("c", 3, "s2", ttl_ms=5)
        clock.advance_ms(10)

        assert engine.purge_expired("s1") == 1
        assert engine.get_stats("s2").current_size == 1
        assert engine.purge_expired() == 1
        assert engine.get_stats("s2").current_size == 0
        assert [e.key for e in engine.list_entries()] == ["b"]

    def test_list_entries_does_not_touch_stats(self, engine, clock):
        """Listing entries skips expired ones and records no access."""
        engine.set("a", 1, "s1")
        engine.set("b", 2, "s1", ttl_ms=5)
        clock.advance_ms(10)

        entries = engine.list_entries("s1")

        assert [e.key for e in entries] == ["a"]
        assert entries[0].to_dict()["strategyId"] == "s1"
        stats = engine.get_stats("s1")
        assert stats.hits == 0
        assert stats.misses == 0

    def test_reset_stats_keeps_size(self, engine):
        """Resetting zeroes counters but keeps the live size."""
        engine.set("a", 1, "s1")
        engine.get("a", "s1")
        engine.get("b", "s1")

        assert engine.reset_stats("s1") is True

        stats = engine.get_stats("s1")
        assert stats.hits == 0
        assert stats.misses == 0
        assert stats.sets == 0
        assert stats.current_size == 1
        assert engine.reset_stats("missing") is False

    def test_stats_rates(self, engine):
        """Hit and miss rates are derived from the counters."""
        engine.set("a", 1, "s1")
        engine.get("a", "s1")
        engine.get("a", "s1")
        engine.get("a", "s1")
        engine.get("b", "s1")

        data = engine.get_stats("s1").to_dict()
        assert data["hitRate"] == 0.75
        assert data["missRate"] == 0.25
        assert data["currentSize"] == 1
