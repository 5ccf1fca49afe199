"""
Eviction engine: picks the entry to drop when a strategy is full.
"""

import random
from collections import OrderedDict
from typing import AbstractSet, Callable, Dict, Optional

from shared.errors import CapacityError
from .models import CacheEntry, CacheStrategy, EvictionPolicy


NO_KEYS: AbstractSet[str] = frozenset()


def select_lru(entries: "OrderedDict[str, CacheEntry]", exclude: AbstractSet[str] = NO_KEYS) -> str:
    # Partitions are kept in recency order; the head is the least recently used.
    return next(key for key in entries if key not in exclude)


def select_lfu(entries: "OrderedDict[str, CacheEntry]", exclude: AbstractSet[str] = NO_KEYS) -> str:
    victim = min(
        (entry for entry in entries.values() if entry.key not in exclude),
        key=lambda entry: (entry.hit_count, entry.created_at, entry.sequence),
    )
    return victim.key


def select_fifo(entries: "OrderedDict[str, CacheEntry]", exclude: AbstractSet[str] = NO_KEYS) -> str:
    victim = min(
        (entry for entry in entries.values() if entry.key not in exclude),
        key=lambda entry: (entry.created_at, entry.sequence),
    )
    return victim.key


def select_soonest_expiry(entries: "OrderedDict[str, CacheEntry]", exclude: AbstractSet[str] = NO_KEYS) -> str:
    candidates = [
        entry for entry in entries.values()
        if entry.expires_at is not None and entry.key not in exclude
    ]
    if not candidates:
        raise CapacityError(
            "No entry carries a TTL; TTL-only strategy cannot make room",
            details={"entries": len(entries)}
        )
    victim = min(candidates, key=lambda entry: (entry.expires_at, entry.sequence))
    return victim.key


SELECTORS: Dict[EvictionPolicy, Callable[..., str]] = {
    EvictionPolicy.LRU: select_lru,
    EvictionPolicy.LFU: select_lfu,
    EvictionPolicy.FIFO: select_fifo,
    EvictionPolicy.TTL: select_soonest_expiry,
}


class EvictionEngine:
    """Chooses eviction victims according to a strategy's policy.

    The random policy draws from rng, so tests can pass a seeded
    random.Random for repeatable picks.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def select_victim(
        self,
        strategy: CacheStrategy,
        entries: "OrderedDict[str, CacheEntry]",
        exclude: AbstractSet[str] = NO_KEYS,
    ) -> str:
        """Return the key to evict, skipping exclude; raises CapacityError when nothing may be evicted."""
        if len(entries) <= len(exclude):
            raise CapacityError(
                "Strategy has no entries to evict",
                details={"strategyId": strategy.id}
            )
        if strategy.eviction_policy == EvictionPolicy.RANDOM:
            return self.rng.choice([key for key in entries if key not in exclude])
        return SELECTORS[strategy.eviction_policy](entries, exclude)

    @staticmethod
    def can_evict(strategy: CacheStrategy, entry: CacheEntry) -> bool:
        """Whether the policy may ever pick entry."""
        if strategy.eviction_policy == EvictionPolicy.TTL:
            return entry.expires_at is not None
        return True
