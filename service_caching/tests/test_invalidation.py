"""
Unit tests for pattern, tag and rule-based invalidation.
"""

import pytest

from service_caching.app.caching import CacheEngine, InvalidationAction, InvalidationRule
from service_caching.app.caching.invalidation import compile_pattern
from shared.errors import ValidationError
from shared.test_helpers import FakeClock


class TestPatternInvalidation:
    """Test cases for invalidate()."""

    @pytest.fixture
    def engine(self):
        """Create CacheEngine with a populated strategy."""
        engine = CacheEngine(clock=FakeClock())
        engine.create_strategy(strategy_id="s1", max_entries=20)
        for key in ("user:1", "user:2", "user:1:profile", "session:9", "api.v1", "apixv1", "USER:3"):
            engine.set(key, key, "s1")
        return engine

    def test_prefix_pattern(self, engine):
        """A trailing star matches any suffix."""
        count = engine.invalidate("user:*", "s1")

        assert count == 3
        remaining = sorted(e.key for e in engine.list_entries("s1"))
        assert remaining == ["USER:3", "api.v1", "apixv1", "session:9"]

    def test_match_is_whole_key_and_literal(self, engine):
        """Dots are literal and the whole key must match."""
        assert engine.invalidate("api.v1", "s1") == 1
        assert engine.lookup("apixv1", "s1") is not None
        assert engine.invalidate("user:1", "s1") == 1
        assert engine.lookup("user:1:profile", "s1") is not None

    def test_inner_wildcard(self, engine):
        """A star in the middle matches any substring, including an empty one."""
        assert engine.invalidate("user:*:profile", "s1") == 1
        assert engine.invalidate("*9", "s1") == 1

    def test_case_sensitive(self, engine):
        """Matching is case-sensitive."""
        engine.invalidate("user:*", "s1")

        assert engine.lookup("USER:3", "s1") is not None

    def test_empty_pattern_removes_nothing(self, engine):
        """An empty pattern is a no-op."""
        assert engine.invalidate("", "s1") == 0
        assert engine.get_stats("s1").current_size == 7

    def test_star_removes_everything(self, engine):
        """A lone star matches every key."""
        assert engine.invalidate("*", "s1") == 7
        assert engine.get_stats("s1").current_size == 0

    def test_counters(self, engine):
        """Invalidation counts separately from eviction."""
        engine.invalidate("user:*", "s1")

        stats = engine.get_stats("s1")
        assert stats.invalidations == 3
        assert stats.evictions == 0
        assert stats.current_size == 4

    def test_unknown_strategy(self, engine):
        """Unknown strategies have nothing to invalidate."""
        assert engine.invalidate("*", "missing") == 0

    def test_compile_pattern(self):
        """Regex metacharacters in patterns are literal."""
        regex = compile_pattern("a+b(*)")

        assert regex.fullmatch("a+b(xyz)") is not None
        assert regex.fullmatch("aab(x)") is None
        assert compile_pattern("") is None


class TestTagInvalidation:
    """Test cases for invalidate_by_tags()."""

    @pytest.fixture
    def engine(self):
        """Create CacheEngine instance."""
        engine = CacheEngine(clock=FakeClock())
        engine.create_strategy(strategy_id="s1", max_entries=20)
        return engine

    def test_single_tag(self, engine):
        """Only entries carrying the tag are removed."""
        engine.set("p1", "v1", "s1", tags=["user:42"])
        engine.set("p2", "v2", "s1", tags=["user:42", "session"])

        assert engine.invalidate_by_tags(["session"], "s1") == 1

        assert engine.get("p1", "s1") == "v1"
        assert engine.get("p2", "s1") is None

    def test_tags_are_or(self, engine):
        """Any matching tag is enough; untagged entries survive."""
        engine.set("a", 1, "s1", tags=["a"])
        engine.set("b", 2, "s1", tags=["b"])
        engine.set("ab", 3, "s1", tags=["a", "b"])
        engine.set("c", 4, "s1", tags=["c"])
        engine.set("none", 5, "s1")

        assert engine.invalidate_by_tags(["a", "b"], "s1") == 3

        assert sorted(e.key for e in engine.list_entries("s1")) == ["c", "none"]
        assert engine.get_stats("s1").invalidations == 3

    def test_empty_tags(self, engine):
        """An empty tag set removes nothing."""
        engine.set("a", 1, "s1", tags=["a"])

        assert engine.invalidate_by_tags([], "s1") == 0
        assert engine.get_stats("s1").current_size == 1

    def test_string_is_rejected(self, engine):
        """A bare string is not a tag list."""
        with pytest.raises(ValidationError):
            engine.invalidate_by_tags("a", "s1")


class TestInvalidationRules:
    """Test cases for named invalidation rules."""

    @pytest.fixture
    def clock(self):
        """Create a manually advanced clock."""
        return FakeClock()

    @pytest.fixture
    def engine(self, clock):
        """Create CacheEngine with mixed keys."""
        engine = CacheEngine(clock=clock)
        engine.create_strategy(strategy_id="s1", max_entries=20, default_ttl_ms=10000)
        engine.set("user:1", 1, "s1")
        engine.set("session:1", 2, "s1")
        engine.set("api:list", 3, "s1")
        engine.set("api:static", 4, "s1", ttl_ms=0)
        return engine

    def test_default_rules(self, engine):
        """The built-in rules are listed."""
        rules = {rule.id: rule for rule in engine.list_invalidation_rules()}

        assert set(rules) == {"user-data-invalidation", "session-data-refresh", "api-response-extend"}
        assert rules["user-data-invalidation"].action == InvalidationAction.INVALIDATE
        assert rules["session-data-refresh"].to_dict()["ttlMs"] == 3600000

    def test_invalidate_rule(self, engine):
        """An invalidate rule removes matching keys."""
        assert engine.apply_invalidation_rule("user-data-invalidation", "s1") == 1
        assert engine.lookup("user:1", "s1") is None
        assert engine.get_stats("s1").invalidations == 1

    def test_refresh_rule(self, engine, clock):
        """A refresh rule resets expiry to now plus the rule TTL."""
        clock.advance_ms(5000)

        assert engine.apply_invalidation_rule("session-data-refresh", "s1") == 1

        entry = engine.peek("session:1", "s1")
        assert entry.expires_at == clock.now + 3600
        clock.advance_ms(60000)
        assert engine.get("session:1", "s1") == 2

    def test_extend_rule(self, engine, clock):
        """An extend rule only lengthens entries that carry a TTL."""
        before = engine.peek("api:list", "s1").expires_at

        assert engine.apply_invalidation_rule("api-response-extend", "s1") == 1

        assert engine.peek("api:list", "s1").expires_at == before + 7200
        assert engine.peek("api:static", "s1").expires_at is None

    def test_unknown_and_disabled_rules(self, clock):
        """Unknown or disabled rules report not found."""
        rule = InvalidationRule(
            id="off",
            name="Disabled",
            pattern="*",
            action=InvalidationAction.INVALIDATE,
            ttl_ms=0,
            enabled=False,
        )
        engine = CacheEngine(clock=clock, invalidation_rules=[rule])
        engine.create_strategy(strategy_id="s1", max_entries=5)
        engine.set("a", 1, "s1")

        assert engine.apply_invalidation_rule("missing", "s1") is None
        assert engine.apply_invalidation_rule("off", "s1") is None
        assert engine.get_stats("s1").current_size == 1
