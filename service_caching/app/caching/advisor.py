"""
Rule-based optimization advisor.

Suggestions are derived from a snapshot of per-strategy stats, using the
thresholds in AdvisorPolicy. The same snapshot and policy always produce the
same suggestions (ids aside). Each call to generate() replaces the pending
set; applying a suggestion mutates its strategy through the registry and
consumes it.
"""

import math
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from .models import CacheStats, CacheStrategy, Impact, OptimizationSuggestion, SuggestionKind
from .registry import StrategyRegistry
from .stats import StatsTracker


@dataclass(frozen=True)
class AdvisorPolicy:
    """Thresholds for the advisor rules."""
    min_sample_size: int = 100
    low_hit_rate: float = 0.5
    eviction_pressure_ratio: float = 0.1
    underuse_ratio: float = 0.25
    capacity_growth_factor: float = 2.0
    ttl_growth_factor: float = 2.0
    capacity_shrink_factor: float = 0.5


class OptimizationAdvisor:
    """Generates, lists and applies OptimizationSuggestions."""

    def __init__(
        self,
        registry: StrategyRegistry,
        stats: StatsTracker,
        policy: Optional[AdvisorPolicy] = None,
        clock: Callable[[], float] = time.time,
        updater: Optional[Callable[[str, Dict[str, Any]], bool]] = None,
    ):
        self.registry = registry
        self.stats = stats
        self.updater = updater or registry.update
        self.policy = policy or AdvisorPolicy()
        self.clock = clock
        self.logger = get_logger("caching.advisor")
        self._pending: Dict[str, OptimizationSuggestion] = {}

    def generate(self) -> List[OptimizationSuggestion]:
        """Evaluate every strategy and replace the pending suggestions."""
        suggestions: List[OptimizationSuggestion] = []
        for strategy in self.registry.list():
            stats = self.stats.get(strategy.id)
            if stats is None:
                continue
            suggestion = self._evaluate(strategy, stats)
            if suggestion is not None:
                suggestions.append(suggestion)

        superseded = len(self._pending)
        self._pending = {suggestion.id: suggestion for suggestion in suggestions}

        self.logger.info(
            "Optimizations generated",
            count=len(suggestions),
            superseded=superseded
        )
        return suggestions

    def list(self) -> List[OptimizationSuggestion]:
        return list(self._pending.values())

    def apply(self, suggestion_id: str) -> bool:
        """Apply a pending suggestion once; False if it is unknown or its strategy is gone."""
        suggestion = self._pending.pop(suggestion_id, None)
        if suggestion is None:
            return False

        try:
            applied = self.updater(suggestion.strategy_id, dict(suggestion.changes))
        except ValidationError as e:
            self.logger.warning(
                "Optimization refused",
                suggestion_id=suggestion_id,
                strategy_id=suggestion.strategy_id,
                error=e.message
            )
            return False

        self.logger.info(
            "Optimization applied" if applied else "Optimization target missing",
            suggestion_id=suggestion_id,
            strategy_id=suggestion.strategy_id,
            kind=suggestion.kind.value,
            changes=dict(suggestion.changes)
        )
        return applied

    def _evaluate(self, strategy: CacheStrategy, stats: CacheStats) -> Optional[OptimizationSuggestion]:
        policy = self.policy
        requests = stats.requests
        if requests < policy.min_sample_size:
            return None

        eviction_ratio = stats.evictions / requests
        if eviction_ratio > policy.eviction_pressure_ratio:
            new_capacity = self._grow(strategy.max_entries)
            impact = Impact.HIGH if eviction_ratio > 2 * policy.eviction_pressure_ratio else Impact.MEDIUM
            return self._suggest(
                strategy,
                SuggestionKind.INCREASE_CAPACITY,
                f"{stats.evictions} evictions over {requests} requests "
                f"({eviction_ratio:.0%}) exceeds {policy.eviction_pressure_ratio:.0%}",
                impact,
                {"max_entries": new_capacity},
            )

        hit_rate = stats.hit_rate
        if hit_rate >= policy.low_hit_rate:
            return None

        impact = Impact.HIGH if hit_rate < policy.low_hit_rate / 2 else Impact.MEDIUM
        underused = stats.current_size < policy.underuse_ratio * strategy.max_entries

        if underused:
            new_capacity = max(
                1,
                stats.current_size,
                math.ceil(strategy.max_entries * policy.capacity_shrink_factor),
            )
            if new_capacity >= strategy.max_entries:
                return None
            return self._suggest(
                strategy,
                SuggestionKind.DECREASE_CAPACITY,
                f"Hit rate {hit_rate:.0%} with only {stats.current_size} of "
                f"{strategy.max_entries} slots in use",
                Impact.LOW,
                {"max_entries": new_capacity},
            )

        if strategy.default_ttl_ms > 0:
            new_ttl = int(strategy.default_ttl_ms * policy.ttl_growth_factor)
            return self._suggest(
                strategy,
                SuggestionKind.INCREASE_TTL,
                f"Hit rate {hit_rate:.0%} below {policy.low_hit_rate:.0%}; "
                f"{stats.expirations} entries expired before reuse",
                impact,
                {"default_ttl_ms": new_ttl},
            )

        return self._suggest(
            strategy,
            SuggestionKind.INCREASE_CAPACITY,
            f"Hit rate {hit_rate:.0%} below {policy.low_hit_rate:.0%} with entries that never expire",
            impact,
            {"max_entries": self._grow(strategy.max_entries)},
        )

    def _grow(self, max_entries: int) -> int:
        return max(max_entries + 1, math.ceil(max_entries * self.policy.capacity_growth_factor))

    def _suggest(self, strategy, kind, rationale, impact, changes) -> OptimizationSuggestion:
        return OptimizationSuggestion(
            id=f"optimization_{uuid.uuid4().hex[:12]}",
            strategy_id=strategy.id,
            kind=kind,
            rationale=rationale,
            estimated_impact=impact,
            changes=changes,
            created_at=self.clock(),
        )
