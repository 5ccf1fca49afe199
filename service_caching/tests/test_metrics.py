"""
Unit tests for Prometheus mirroring of cache stats.
"""

import pytest

from service_caching.app.caching import CacheEngine
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock


class TestCacheMetrics:
    """Test cases for Prometheus mirroring of cache stats."""

    @pytest.fixture
    def metrics(self):
        """Create an isolated caching collector."""
        return MetricsCollector("caching")

    @pytest.fixture
    def engine(self, metrics):
        """Create CacheEngine reporting to the collector."""
        engine = CacheEngine(clock=FakeClock(), metrics=metrics)
        engine.create_strategy(strategy_id="s1", max_entries=1)
        return engine

    def _value(self, metrics, name, **labels):
        return metrics.registry.get_sample_value(name, labels)

    def test_operations_are_counted(self, engine, metrics):
        """Hits, misses, inserts and evictions reach Prometheus."""
        engine.set("a", 1, "s1")
        engine.get("a", "s1")
        engine.get("b", "s1")
        engine.set("c", 3, "s1")

        assert self._value(metrics, "cache_operations_total", strategy="s1", operation="get", result="hit") == 1
        assert self._value(metrics, "cache_operations_total", strategy="s1", operation="get", result="miss") == 1
        assert self._value(metrics, "cache_operations_total", strategy="s1", operation="set", result="inserted") == 2
        assert self._value(metrics, "cache_evictions_total", strategy="s1") == 1
        assert self._value(metrics, "cache_entries", strategy="s1") == 1

    def test_invalidations_are_counted(self, engine, metrics):
        """Invalidations are reported separately from evictions."""
        engine.set("a", 1, "s1")
        engine.invalidate("*", "s1")

        assert self._value(metrics, "cache_invalidations_total", strategy="s1") == 1
        assert self._value(metrics, "cache_entries", strategy="s1") == 0

    def test_only_caching_service_registers_cache_metrics(self):
        """Other collectors carry only the common metrics."""
        assert MetricsCollector("other").get_metric("cache_operations_total") is None
        assert MetricsCollector("caching").get_metric("cache_operations_total") is not None
