"""
Cache engine facade.

One CacheEngine is built per service and handed to the HTTP handlers; tests
build their own isolated instances. All operations are synchronous.
"""

import random
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

from shared.errors import ValidationError
from shared.logging import get_logger
from .advisor import AdvisorPolicy, OptimizationAdvisor
from .eviction import EvictionEngine
from .invalidation import InvalidationEngine
from .models import (
    CacheEntry, CacheStats, CacheStrategy, EvictionPolicy,
    InvalidationRule, OptimizationSuggestion
)
from .registry import StrategyRegistry
from .stats import StatsTracker
from .store import CacheStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_STRATEGIES = [
    {
        "strategy_id": "memory-cache",
        "name": "Memory Cache",
        "max_entries": 1000,
        "default_ttl_ms": 60 * 60 * 1000,
        "eviction_policy": EvictionPolicy.LRU,
    },
    {
        "strategy_id": "session-cache",
        "name": "Session Cache",
        "max_entries": 10000,
        "default_ttl_ms": 2 * 60 * 60 * 1000,
        "eviction_policy": EvictionPolicy.LRU,
    },
    {
        "strategy_id": "static-cache",
        "name": "Static Content Cache",
        "max_entries": 50000,
        "default_ttl_ms": 24 * 60 * 60 * 1000,
        "eviction_policy": EvictionPolicy.TTL,
    },
]


class CacheEngine:
    """Strategy registry, entry store, invalidation and advisor behind one object."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
        advisor_policy: Optional[AdvisorPolicy] = None,
        invalidation_rules: Optional[Iterable[InvalidationRule]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.clock = clock
        self.logger = get_logger("caching.engine")
        self.registry = StrategyRegistry(clock)
        self.stats = StatsTracker(clock, metrics)
        self.store = CacheStore(self.registry, self.stats, EvictionEngine(rng), clock)
        self.invalidation = InvalidationEngine(self.store, clock, invalidation_rules)
        self.advisor = OptimizationAdvisor(
            self.registry,
            self.stats,
            advisor_policy,
            clock,
            updater=self.update_strategy,
        )

    # Strategies

    def create_strategy(self, **config: Any) -> CacheStrategy:
        """Create a strategy; see StrategyRegistry.create for accepted fields."""
        strategy = self.registry.create(**config)
        self.stats.ensure(strategy.id)
        return strategy

    def get_strategy(self, strategy_id: str) -> Optional[CacheStrategy]:
        return self.registry.get(strategy_id)

    def list_strategies(self) -> List[CacheStrategy]:
        return self.registry.list()

    def update_strategy(self, strategy_id: str, updates: Dict[str, Any]) -> bool:
        """Update a strategy, trimming its entries when its limits shrank below what is stored.

        A shrink the eviction policy cannot reach (a TTL-only strategy full of
        entries without a TTL) is refused with ValidationError and nothing
        changes.
        """
        strategy = self.registry.get(strategy_id)
        if strategy is None:
            return False

        validated = self.registry.validate_updates(updates)
        if not self.store.can_fit(replace(strategy, **validated)):
            raise ValidationError(
                "Strategy limits are below what its eviction policy can free",
                details={"strategyId": strategy_id, "entries": self.store.count(strategy_id)}
            )

        self.registry.update(strategy_id, validated)
        evicted = self.store.trim(strategy)
        if evicted:
            self.logger.info(
                "Trimmed strategy after limit change",
                strategy_id=strategy_id,
                max_entries=strategy.max_entries,
                max_size_bytes=strategy.max_size_bytes,
                evicted=evicted
            )
        return True

    def seed_default_strategies(self) -> List[CacheStrategy]:
        """Create the built-in strategies that do not exist yet."""
        created = []
        for config in DEFAULT_STRATEGIES:
            if self.registry.get(config["strategy_id"]) is None:
                created.append(self.create_strategy(**config))
        return created

    # Entries

    def get(self, key: str, strategy_id: str) -> Any:
        return self.store.get(key, strategy_id)

    def lookup(self, key: str, strategy_id: str) -> Optional[CacheEntry]:
        return self.store.lookup(key, strategy_id)

    def peek(self, key: str, strategy_id: str) -> Optional[CacheEntry]:
        return self.store.peek(key, strategy_id)

    def set(
        self,
        key: str,
        value: Any,
        strategy_id: str,
        ttl_ms: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self.store.set(key, value, strategy_id, ttl_ms=ttl_ms, tags=tags, metadata=metadata)

    def delete(self, key: str, strategy_id: str) -> bool:
        return self.store.delete(key, strategy_id)

    def purge_expired(self, strategy_id: Optional[str] = None) -> int:
        return self.store.purge_expired(strategy_id)

    def list_entries(self, strategy_id: Optional[str] = None) -> List[CacheEntry]:
        return self.store.list_entries(strategy_id)

    # Invalidation

    def invalidate(self, pattern: str, strategy_id: str) -> int:
        return self.invalidation.invalidate(pattern, strategy_id)

    def invalidate_by_tags(self, tags: Iterable[str], strategy_id: str) -> int:
        return self.invalidation.invalidate_by_tags(tags, strategy_id)

    def list_invalidation_rules(self) -> List[InvalidationRule]:
        return self.invalidation.list_rules()

    def apply_invalidation_rule(self, rule_id: str, strategy_id: str) -> Optional[int]:
        return self.invalidation.apply_rule(rule_id, strategy_id)

    # Stats and optimization

    def get_stats(self, strategy_id: str) -> Optional[CacheStats]:
        return self.stats.get(strategy_id)

    def get_all_stats(self) -> Dict[str, CacheStats]:
        return self.stats.all()

    def reset_stats(self, strategy_id: str) -> bool:
        return self.stats.reset(strategy_id)

    def generate_optimizations(self) -> List[OptimizationSuggestion]:
        return self.advisor.generate()

    def list_optimizations(self) -> List[OptimizationSuggestion]:
        return self.advisor.list()

    def apply_optimization(self, suggestion_id: str) -> bool:
        return self.advisor.apply(suggestion_id)
