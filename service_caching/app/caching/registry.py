"""
Strategy registry: create, fetch, list and update cache strategies.
"""

import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.errors import ConflictError, ValidationError
from .models import CacheStrategy, EvictionPolicy


UPDATABLE_FIELDS = frozenset({
    "max_entries", "default_ttl_ms", "eviction_policy", "max_size_bytes", "name", "enabled", "metadata"
})


def _coerce_policy(value: Any) -> EvictionPolicy:
    if isinstance(value, EvictionPolicy):
        return value
    try:
        return EvictionPolicy(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"Unknown eviction policy: {value}",
            details={"allowed": [p.value for p in EvictionPolicy]}
        )


def _check_max_entries(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError("maxEntries must be a positive integer", details={"maxEntries": value})
    return value


def _check_default_ttl(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("defaultTtlMs must be a non-negative integer", details={"defaultTtlMs": value})
    return value


def _check_max_size(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError("maxSizeBytes must be a positive integer or null", details={"maxSizeBytes": value})
    return value


class StrategyRegistry:
    """Owns every CacheStrategy; strategies are never deleted."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.logger = get_logger("caching.registry")
        self._strategies: Dict[str, CacheStrategy] = {}

    def create(
        self,
        max_entries: int,
        default_ttl_ms: int = 0,
        eviction_policy: Any = EvictionPolicy.LRU,
        strategy_id: Optional[str] = None,
        name: Optional[str] = None,
        enabled: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        max_size_bytes: Optional[int] = None,
    ) -> CacheStrategy:
        """Validate and register a new strategy."""
        max_entries = _check_max_entries(max_entries)
        default_ttl_ms = _check_default_ttl(default_ttl_ms)
        policy = _coerce_policy(eviction_policy)
        max_size_bytes = _check_max_size(max_size_bytes)

        if strategy_id is not None and (not isinstance(strategy_id, str) or not strategy_id.strip()):
            raise ValidationError("Strategy id must be a non-empty string")
        if strategy_id is None:
            strategy_id = f"strategy_{uuid.uuid4().hex[:12]}"
        if strategy_id in self._strategies:
            raise ConflictError(
                f"Strategy '{strategy_id}' already exists",
                details={"strategyId": strategy_id}
            )

        now = self.clock()
        strategy = CacheStrategy(
            id=strategy_id,
            name=name or strategy_id,
            max_entries=max_entries,
            default_ttl_ms=default_ttl_ms,
            eviction_policy=policy,
            enabled=bool(enabled),
            max_size_bytes=max_size_bytes,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        self._strategies[strategy_id] = strategy

        self.logger.info(
            "Strategy created",
            strategy_id=strategy_id,
            max_entries=max_entries,
            default_ttl_ms=default_ttl_ms,
            eviction_policy=policy.value
        )
        return strategy

    def get(self, strategy_id: str) -> Optional[CacheStrategy]:
        return self._strategies.get(strategy_id)

    def list(self) -> List[CacheStrategy]:
        return list(self._strategies.values())

    def validate_updates(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Check and coerce an update dict without applying it."""
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                "Only non-identity strategy fields can be updated",
                details={"fields": sorted(unknown)}
            )

        validated: Dict[str, Any] = {}
        for field_name, value in updates.items():
            if field_name == "max_entries":
                validated[field_name] = _check_max_entries(value)
            elif field_name == "default_ttl_ms":
                validated[field_name] = _check_default_ttl(value)
            elif field_name == "eviction_policy":
                validated[field_name] = _coerce_policy(value)
            elif field_name == "max_size_bytes":
                validated[field_name] = _check_max_size(value)
            elif field_name == "metadata":
                if not isinstance(value, dict):
                    raise ValidationError("metadata must be an object")
                validated[field_name] = dict(value)
            elif field_name == "enabled":
                validated[field_name] = bool(value)
            else:
                validated[field_name] = str(value)
        return validated

    def update(self, strategy_id: str, updates: Dict[str, Any]) -> bool:
        """Apply allowed field updates; False if the strategy does not exist."""
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            return False

        # Validate everything before touching the strategy.
        validated = self.validate_updates(updates)
        for field_name, value in validated.items():
            setattr(strategy, field_name, value)
        strategy.updated_at = self.clock()

        self.logger.info("Strategy updated", strategy_id=strategy_id, fields=sorted(validated))
        return True
