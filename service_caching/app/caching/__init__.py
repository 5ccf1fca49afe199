"""
Caching package.

In-process cache with named strategies, capacity-driven eviction (LRU, LFU,
FIFO, TTL-only), explicit invalidation by key glob or tag, per-strategy
stats and a rule-based optimization advisor. Entries are volatile and live
for the lifetime of the process.
"""

from .engine import CacheEngine, DEFAULT_STRATEGIES
from .advisor import AdvisorPolicy
from .models import (
    CacheEntry, CacheStats, CacheStrategy, EvictionPolicy, Impact,
    InvalidationAction, InvalidationRule, OptimizationSuggestion, SuggestionKind
)

__all__ = [
    "CacheEngine",
    "DEFAULT_STRATEGIES",
    "AdvisorPolicy",
    "CacheEntry",
    "CacheStats",
    "CacheStrategy",
    "EvictionPolicy",
    "Impact",
    "InvalidationAction",
    "InvalidationRule",
    "OptimizationSuggestion",
    "SuggestionKind",
]
