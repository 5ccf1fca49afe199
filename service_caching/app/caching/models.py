"""
Data models for the caching engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class EvictionPolicy(str, Enum):
    """Which entry is removed when a strategy is full."""
    LRU = "lru"
    LFU = "lfu"
    TTL = "ttl"
    FIFO = "fifo"
    RANDOM = "random"


class SuggestionKind(str, Enum):
    """Optimization suggestion kinds."""
    INCREASE_CAPACITY = "increase_capacity"
    INCREASE_TTL = "increase_ttl"
    DECREASE_CAPACITY = "decrease_capacity"


class Impact(str, Enum):
    """Estimated impact of a suggestion."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class InvalidationAction(str, Enum):
    """What an invalidation rule does to matching entries."""
    INVALIDATE = "invalidate"
    REFRESH = "refresh"
    EXTEND = "extend"


@dataclass
class CacheStrategy:
    """Named configuration governing capacity, TTL and eviction."""
    id: str
    name: str
    max_entries: int
    default_ttl_ms: int = 0
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    enabled: bool = True
    max_size_bytes: Optional[int] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "maxEntries": self.max_entries,
            "defaultTtlMs": self.default_ttl_ms,
            "evictionPolicy": self.eviction_policy.value,
            "enabled": self.enabled,
            "maxSizeBytes": self.max_size_bytes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "metadata": self.metadata,
        }


@dataclass
class CacheEntry:
    """A stored value plus the bookkeeping eviction and invalidation need."""
    key: str
    value: Any
    strategy_id: str
    created_at: float
    expires_at: Optional[float] = None
    tags: Set[str] = field(default_factory=set)
    last_accessed: float = 0.0
    hit_count: int = 0
    sequence: int = 0
    size_bytes: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def remaining_ttl_ms(self, now: float) -> Optional[int]:
        if self.expires_at is None:
            return None
        return max(0, int((self.expires_at - now) * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "strategyId": self.strategy_id,
            "tags": sorted(self.tags),
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
            "lastAccessed": _iso(self.last_accessed),
            "hitCount": self.hit_count,
            "sizeBytes": self.size_bytes,
            "metadata": self.metadata,
        }


@dataclass
class CacheStats:
    """Per-strategy counters; everything but current_size only grows."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    invalidations: int = 0
    expirations: int = 0
    current_size: int = 0
    total_size_bytes: int = 0
    updated_at: float = 0.0

    @property
    def requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.requests if self.requests else 0.0

    @property
    def miss_rate(self) -> float:
        return self.misses / self.requests if self.requests else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "expirations": self.expirations,
            "currentSize": self.current_size,
            "totalSizeBytes": self.total_size_bytes,
            "hitRate": round(self.hit_rate, 4),
            "missRate": round(self.miss_rate, 4),
            "timestamp": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class OptimizationSuggestion:
    """A proposed strategy change, applied at most once."""
    id: str
    strategy_id: str
    kind: SuggestionKind
    rationale: str
    estimated_impact: Impact
    changes: Dict[str, Any]
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "strategyId": self.strategy_id,
            "kind": self.kind.value,
            "rationale": self.rationale,
            "estimatedImpact": self.estimated_impact.value,
            "changes": dict(self.changes),
            "createdAt": _iso(self.created_at),
        }


@dataclass
class InvalidationRule:
    """Named pattern with an action applied on demand."""
    id: str
    name: str
    pattern: str
    action: InvalidationAction
    ttl_ms: int
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pattern": self.pattern,
            "action": self.action.value,
            "ttlMs": self.ttl_ms,
            "enabled": self.enabled,
            "metadata": self.metadata,
        }
