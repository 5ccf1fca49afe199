"""
Per-strategy hit/miss/eviction counters.
"""

import time
from typing import Callable, Dict, Optional, TYPE_CHECKING

from .models import CacheStats

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class StatsTracker:
    """Incrementally maintained CacheStats, mirrored to Prometheus when a collector is given."""

    def __init__(self, clock: Callable[[], float] = time.time, metrics: Optional["MetricsCollector"] = None):
        self.clock = clock
        self.metrics = metrics
        self._stats: Dict[str, CacheStats] = {}

    def ensure(self, strategy_id: str) -> CacheStats:
        stats = self._stats.get(strategy_id)
        if stats is None:
            stats = CacheStats(updated_at=self.clock())
            self._stats[strategy_id] = stats
        return stats

    def get(self, strategy_id: str) -> Optional[CacheStats]:
        return self._stats.get(strategy_id)

    def all(self) -> Dict[str, CacheStats]:
        return dict(self._stats)

    def reset(self, strategy_id: str) -> bool:
        """Zero the counters but keep the live size."""
        stats = self._stats.get(strategy_id)
        if stats is None:
            return False
        self._stats[strategy_id] = CacheStats(
            current_size=stats.current_size,
            total_size_bytes=stats.total_size_bytes,
            updated_at=self.clock(),
        )
        return True

    def record_hit(self, strategy_id: str):
        stats = self._touch(strategy_id)
        stats.hits += 1
        self._count(strategy_id, "get", "hit")

    def record_miss(self, strategy_id: str):
        # Misses on unknown strategies are not tracked anywhere.
        stats = self._stats.get(strategy_id)
        if stats is not None:
            stats.misses += 1
            stats.updated_at = self.clock()
        self._count(strategy_id, "get", "miss")

    def record_insert(self, strategy_id: str, size_bytes: int):
        stats = self._touch(strategy_id)
        stats.sets += 1
        stats.current_size += 1
        stats.total_size_bytes += size_bytes
        self._count(strategy_id, "set", "inserted")
        self._gauge(strategy_id, stats)

    def record_overwrite(self, strategy_id: str, size_delta: int):
        stats = self._touch(strategy_id)
        stats.sets += 1
        stats.total_size_bytes += size_delta
        self._count(strategy_id, "set", "overwritten")

    def record_rejected_set(self, strategy_id: str):
        self._count(strategy_id, "set", "rejected")

    def record_delete(self, strategy_id: str, size_bytes: int):
        stats = self._removed(strategy_id, size_bytes)
        stats.deletes += 1
        self._count(strategy_id, "delete", "removed")

    def record_eviction(self, strategy_id: str, size_bytes: int):
        stats = self._removed(strategy_id, size_bytes)
        stats.evictions += 1
        if self.metrics:
            self.metrics.increment_counter("cache_evictions_total", strategy=strategy_id)

    def record_invalidation(self, strategy_id: str, size_bytes: int):
        stats = self._removed(strategy_id, size_bytes)
        stats.invalidations += 1
        if self.metrics:
            self.metrics.increment_counter("cache_invalidations_total", strategy=strategy_id)

    def record_expiration(self, strategy_id: str, size_bytes: int):
        stats = self._removed(strategy_id, size_bytes)
        stats.expirations += 1

    def _touch(self, strategy_id: str) -> CacheStats:
        stats = self.ensure(strategy_id)
        stats.updated_at = self.clock()
        return stats

    def _removed(self, strategy_id: str, size_bytes: int) -> CacheStats:
        stats = self._touch(strategy_id)
        stats.current_size -= 1
        stats.total_size_bytes -= size_bytes
        self._gauge(strategy_id, stats)
        return stats

    def _count(self, strategy_id: str, operation: str, result: str):
        if self.metrics:
            self.metrics.increment_counter(
                "cache_operations_total",
                strategy=strategy_id,
                operation=operation,
                result=result,
            )

    def _gauge(self, strategy_id: str, stats: CacheStats):
        if self.metrics:
            self.metrics.set_gauge("cache_entries", stats.current_size, strategy=strategy_id)
