"""
Unit tests for the optimization advisor.
"""

import pytest

from service_caching.app.caching import AdvisorPolicy, CacheEngine, Impact, SuggestionKind
from shared.test_helpers import FakeClock


def _miss(engine, strategy_id, times):
    for i in range(times):
        engine.get(f"absent-{i}", strategy_id)


class TestOptimizationAdvisor:
    """Test cases for suggestion generation and application."""

    @pytest.fixture
    def engine(self):
        """Create CacheEngine with a small sample size threshold."""
        return CacheEngine(clock=FakeClock(), advisor_policy=AdvisorPolicy(min_sample_size=10))

    def test_no_suggestions_below_sample_size(self, engine):
        """Strategies with too few requests are skipped."""
        engine.create_strategy(strategy_id="s1", max_entries=10, default_ttl_ms=1000)
        _miss(engine, "s1", 9)

        assert engine.generate_optimizations() == []

    def test_healthy_strategy_has_no_suggestion(self, engine):
        """A good hit rate without eviction pressure needs nothing."""
        engine.create_strategy(strategy_id="s1", max_entries=10)
        engine.set("a", 1, "s1")
        for _ in range(10):
            engine.get("a", "s1")

        assert engine.generate_optimizations() == []

    def test_eviction_pressure(self, engine):
        """Frequent evictions suggest more capacity."""
        engine.create_strategy(strategy_id="s1", max_entries=2)
        for i in range(10):
            engine.set(f"k{i}", i, "s1")
        _miss(engine, "s1", 10)

        [suggestion] = engine.generate_optimizations()

        assert suggestion.strategy_id == "s1"
        assert suggestion.kind == SuggestionKind.INCREASE_CAPACITY
        assert suggestion.estimated_impact == Impact.HIGH
        assert suggestion.changes == {"max_entries": 4}
        assert suggestion.id.startswith("optimization_")

    def test_low_hit_rate_with_ttl(self, engine):
        """Misses on a well used strategy with a TTL suggest a longer TTL."""
        engine.create_strategy(strategy_id="s1", max_entries=10, default_ttl_ms=1000)
        for i in range(5):
            engine.set(f"k{i}", i, "s1")
        _miss(engine, "s1", 10)

        [suggestion] = engine.generate_optimizations()

        assert suggestion.kind == SuggestionKind.INCREASE_TTL
        assert suggestion.changes == {"default_ttl_ms": 2000}
        assert suggestion.estimated_impact == Impact.HIGH

    def test_low_hit_rate_without_ttl(self, engine):
        """Misses on a well used strategy without TTL suggest more capacity."""
        engine.create_strategy(strategy_id="s1", max_entries=4)
        engine.set("a", 1, "s1")
        engine.set("b", 2, "s1")
        _miss(engine, "s1", 10)

        [suggestion] = engine.generate_optimizations()

        assert suggestion.kind == SuggestionKind.INCREASE_CAPACITY
        assert suggestion.changes == {"max_entries": 8}

    def test_underused_strategy(self, engine):
        """Misses on a mostly empty strategy suggest shrinking it."""
        engine.create_strategy(strategy_id="s1", max_entries=100, default_ttl_ms=1000)
        engine.set("a", 1, "s1")
        _miss(engine, "s1", 10)

        [suggestion] = engine.generate_optimizations()

        assert suggestion.kind == SuggestionKind.DECREASE_CAPACITY
        assert suggestion.estimated_impact == Impact.LOW
        assert suggestion.changes == {"max_entries": 50}

    def test_deterministic(self, engine):
        """The same stats produce the same suggestions."""
        engine.create_strategy(strategy_id="s1", max_entries=4)
        engine.set("a", 1, "s1")
        engine.set("b", 2, "s1")
        _miss(engine, "s1", 10)

        first = [(s.kind, s.changes, s.estimated_impact) for s in engine.generate_optimizations()]
        second = [(s.kind, s.changes, s.estimated_impact) for s in engine.generate_optimizations()]

        assert first == second

    def test_generate_supersedes_pending(self, engine):
        """A new generation discards older suggestions."""
        engine.create_strategy(strategy_id="s1", max_entries=4)
        engine.set("a", 1, "s1")
        engine.set("b", 2, "s1")
        _miss(engine, "s1", 10)

        old = engine.generate_optimizations()
        new = engine.generate_optimizations()

        pending = [s.id for s in engine.list_optimizations()]
        assert pending == [s.id for s in new]
        assert old[0].id not in pending
        assert engine.apply_optimization(old[0].id) is False

    def test_apply_once(self, engine):
        """Applying mutates the strategy and consumes the suggestion."""
        engine.create_strategy(strategy_id="s1", max_entries=10, default_ttl_ms=1000)
        for i in range(5):
            engine.set(f"k{i}", i, "s1")
        _miss(engine, "s1", 10)
        [suggestion] = engine.generate_optimizations()

        assert engine.apply_optimization(suggestion.id) is True
        assert engine.get_strategy("s1").default_ttl_ms == 2000
        assert engine.list_optimizations() == []
        assert engine.apply_optimization(suggestion.id) is False

    def test_apply_unknown(self, engine):
        """Unknown suggestion ids are not applied."""
        assert engine.apply_optimization("optimization_missing") is False

    def test_suggestion_serialization(self, engine):
        """Suggestions serialize their kind and impact as strings."""
        engine.create_strategy(strategy_id="s1", max_entries=2)
        for i in range(10):
            engine.set(f"k{i}", i, "s1")
        _miss(engine, "s1", 10)

        data = engine.generate_optimizations()[0].to_dict()

        assert data["kind"] == "increase_capacity"
        assert data["estimatedImpact"] == "high"
        assert data["strategyId"] == "s1"
        assert data["changes"] == {"max_entries": 4}
