"""
Cache entry store: get/set/delete scoped by strategy.
"""

import itertools
import json
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional

from shared.logging import get_logger
from shared.errors import CapacityError, ValidationError
from .eviction import EvictionEngine
from .models import CacheEntry, CacheStrategy
from .registry import StrategyRegistry
from .stats import StatsTracker


def _estimate_size(value: Any) -> int:
    try:
        return len(json.dumps(value).encode("utf-8"))
    except (TypeError, ValueError):
        raise ValidationError("Cached values must be JSON serializable")


def _normalize_tags(tags: Optional[Iterable[str]]) -> set:
    if tags is None:
        return set()
    if isinstance(tags, str):
        raise ValidationError("tags must be a list of strings")
    normalized = set()
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError("tags must be a list of strings", details={"tag": repr(tag)})
        normalized.add(tag)
    return normalized


class CacheStore:
    """Owns every CacheEntry, partitioned per strategy.

    Each partition is an OrderedDict kept in recency order (least recently
    used first), which is what LRU eviction reads. Expired entries are
    removed lazily when read, or in bulk by purge_expired().
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        stats: StatsTracker,
        eviction: Optional[EvictionEngine] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.stats = stats
        self.eviction = eviction or EvictionEngine()
        self.clock = clock
        self.logger = get_logger("caching.store")
        self._partitions: Dict[str, "OrderedDict[str, CacheEntry]"] = {}
        self._sequence = itertools.count(1)

    def _partition(self, strategy_id: str) -> "OrderedDict[str, CacheEntry]":
        return self._partitions.setdefault(strategy_id, OrderedDict())

    def lookup(self, key: str, strategy_id: str) -> Optional[CacheEntry]:
        """Return the live entry for key, recording a hit or a miss."""
        strategy = self.registry.get(strategy_id)
        entries = self._partitions.get(strategy_id)
        entry = entries.get(key) if entries is not None else None

        if strategy is None or not strategy.enabled or entry is None:
            self.stats.record_miss(strategy_id)
            return None

        now = self.clock()
        if entry.is_expired(now):
            del entries[key]
            self.stats.record_expiration(strategy_id, entry.size_bytes)
            self.stats.record_miss(strategy_id)
            self.logger.debug("Expired entry dropped on read", key=key, strategy_id=strategy_id)
            return None

        entry.last_accessed = now
        entry.hit_count += 1
        entries.move_to_end(key)
        self.stats.record_hit(strategy_id)
        return entry

    def get(self, key: str, strategy_id: str) -> Any:
        entry = self.lookup(key, strategy_id)
        return entry.value if entry is not None else None

    def set(
        self,
        key: str,
        value: Any,
        strategy_id: str,
        ttl_ms: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Insert or overwrite key; False when the strategy is unknown, disabled or full."""
        if not isinstance(key, str) or not key:
            raise ValidationError("Key must be a non-empty string")
        if ttl_ms is not None and (isinstance(ttl_ms, bool) or not isinstance(ttl_ms, int) or ttl_ms < 0):
            raise ValidationError("ttlMs must be a non-negative integer", details={"ttlMs": ttl_ms})
        tag_set = _normalize_tags(tags)
        size = _estimate_size(value)

        strategy = self.registry.get(strategy_id)
        if strategy is None or not strategy.enabled:
            self.logger.warning("Set on unknown or disabled strategy", key=key, strategy_id=strategy_id)
            self.stats.record_rejected_set(strategy_id)
            return False

        now = self.clock()
        effective_ttl = strategy.default_ttl_ms if ttl_ms is None else ttl_ms
        entry = CacheEntry(
            key=key,
            value=value,
            strategy_id=strategy_id,
            created_at=now,
            expires_at=now + effective_ttl / 1000.0 if effective_ttl else None,
            tags=tag_set,
            last_accessed=now,
            sequence=next(self._sequence),
            size_bytes=size,
            metadata=dict(metadata or {}),
        )

        entries = self._partition(strategy_id)
        existing = entries.get(key)
        try:
            victims = self._plan_room(strategy, entries, size, replacing=key if existing is not None else None)
        except CapacityError as e:
            self.logger.warning(
                "Set refused, no room in strategy",
                key=key,
                strategy_id=strategy_id,
                error=e.message
            )
            self.stats.record_rejected_set(strategy_id)
            return False

        for victim in victims:
            self._evict(strategy, entries, victim)

        if existing is not None:
            entries[key] = entry
            entries.move_to_end(key)
            self.stats.record_overwrite(strategy_id, size - existing.size_bytes)
            return True

        entries[key] = entry
        self.stats.record_insert(strategy_id, size)
        return True

    def _plan_room(
        self,
        strategy: CacheStrategy,
        entries: "OrderedDict[str, CacheEntry]",
        incoming_bytes: int,
        replacing: Optional[str] = None,
    ) -> List[str]:
        """Keys to evict so an entry of incoming_bytes fits; raises CapacityError.

        Nothing is removed here, so a refused set leaves the partition as it
        was. A new key takes at most one eviction for its slot; the byte
        budget may take more. An overwrite never evicts for its slot and never
        evicts the key it replaces.
        """
        new_key = replacing is None
        if new_key and len(entries) > strategy.max_entries:
            raise CapacityError(
                "Strategy is over capacity",
                details={"strategyId": strategy.id, "entries": len(entries), "maxEntries": strategy.max_entries}
            )

        budget = strategy.max_size_bytes
        if budget is not None and incoming_bytes > budget:
            raise CapacityError(
                "Entry is larger than the strategy byte budget",
                details={"sizeBytes": incoming_bytes, "maxSizeBytes": budget}
            )

        protected = set() if new_key else {replacing}
        remaining = len(entries)
        used = 0
        if budget is not None:
            used = self._used_bytes(entries) - (0 if new_key else entries[replacing].size_bytes)

        victims: List[str] = []
        while (new_key and remaining >= strategy.max_entries) or (budget is not None and used + incoming_bytes > budget):
            victim = self.eviction.select_victim(strategy, entries, protected)
            protected.add(victim)
            victims.append(victim)
            remaining -= 1
            used -= entries[victim].size_bytes
        return victims

    def delete(self, key: str, strategy_id: str) -> bool:
        """Remove key; True only if a live entry was removed."""
        entries = self._partitions.get(strategy_id)
        if not entries or key not in entries:
            return False

        entry = entries.pop(key)
        if entry.is_expired(self.clock()):
            self.stats.record_expiration(strategy_id, entry.size_bytes)
            return False

        self.stats.record_delete(strategy_id, entry.size_bytes)
        return True

    def purge_expired(self, strategy_id: Optional[str] = None) -> int:
        """Sweep expired entries from one strategy or from all of them."""
        now = self.clock()
        strategy_ids = [strategy_id] if strategy_id is not None else list(self._partitions)
        purged = 0

        for sid in strategy_ids:
            entries = self._partitions.get(sid)
            if not entries:
                continue
            for key in [k for k, entry in entries.items() if entry.is_expired(now)]:
                entry = entries.pop(key)
                self.stats.record_expiration(sid, entry.size_bytes)
                purged += 1

        if purged:
            self.logger.info("Purged expired entries", count=purged, strategy_id=strategy_id)
        return purged

    def remove_where(self, strategy_id: str, predicate: Callable[[CacheEntry], bool]) -> List[CacheEntry]:
        """Remove every entry matching predicate, counted as invalidations."""
        entries = self._partitions.get(strategy_id)
        if not entries:
            return []

        removed = [entry for entry in entries.values() if predicate(entry)]
        for entry in removed:
            del entries[entry.key]
            self.stats.record_invalidation(strategy_id, entry.size_bytes)
        return removed

    def can_fit(self, strategy: CacheStrategy) -> bool:
        """Whether trim() can bring the partition within strategy's limits."""
        pinned = [
            entry for entry in self._partitions.get(strategy.id, {}).values()
            if not self.eviction.can_evict(strategy, entry)
        ]
        if len(pinned) > strategy.max_entries:
            return False
        budget = strategy.max_size_bytes
        return budget is None or sum(entry.size_bytes for entry in pinned) <= budget

    def trim(self, strategy: CacheStrategy) -> int:
        """Evict until the strategy fits its entry and byte limits again.

        Raises CapacityError when the policy runs out of victims; check
        can_fit() first.
        """
        entries = self._partitions.get(strategy.id)
        if not entries:
            return 0

        budget = strategy.max_size_bytes
        used = self._used_bytes(entries) if budget is not None else 0
        evicted = 0
        while len(entries) > strategy.max_entries or (budget is not None and used > budget):
            victim = self.eviction.select_victim(strategy, entries)
            used -= entries[victim].size_bytes
            self._evict(strategy, entries, victim)
            evicted += 1
        return evicted

    def peek(self, key: str, strategy_id: str) -> Optional[CacheEntry]:
        """Live entry for key without recording an access."""
        entry = self._partitions.get(strategy_id, {}).get(key)
        if entry is None or entry.is_expired(self.clock()):
            return None
        return entry

    def entries(self, strategy_id: str) -> List[CacheEntry]:
        """Stored entries in recency order, expired ones included."""
        return list(self._partitions.get(strategy_id, {}).values())

    def list_entries(self, strategy_id: Optional[str] = None) -> List[CacheEntry]:
        """Live entries, optionally for one strategy. Does not count as access."""
        now = self.clock()
        if strategy_id is not None:
            partitions = [self._partitions.get(strategy_id, OrderedDict())]
        else:
            partitions = list(self._partitions.values())
        return [
            entry
            for entries in partitions
            for entry in entries.values()
            if not entry.is_expired(now)
        ]

    def count(self, strategy_id: str) -> int:
        return len(self._partitions.get(strategy_id, {}))

    @staticmethod
    def _used_bytes(entries: "OrderedDict[str, CacheEntry]") -> int:
        return sum(entry.size_bytes for entry in entries.values())

    def _evict(self, strategy: CacheStrategy, entries: "OrderedDict[str, CacheEntry]", key: str):
        victim = entries.pop(key)
        self.stats.record_eviction(strategy.id, victim.size_bytes)
        self.logger.debug(
            "Evicted entry",
            key=key,
            strategy_id=strategy.id,
            policy=strategy.eviction_policy.value
        )
