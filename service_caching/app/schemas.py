"""
Request bodies for the caching API.

Field names follow the camelCase wire format; Python code reads the
snake_case attributes.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Base model accepting camelCase aliases or field names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SetOptions(CamelModel):
    """Per-entry options for a set."""
    ttl_ms: Optional[int] = Field(default=None, alias="ttlMs", ge=0)
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class SetRequest(CamelModel):
    """Write one key."""
    key: str = Field(..., min_length=1)
    value: Any = Field(...)
    strategy_id: Optional[str] = Field(default=None, alias="strategyId")
    options: SetOptions = Field(default_factory=SetOptions)


class CreateStrategyRequest(CamelModel):
    """New strategy config; values are validated by the registry."""
    id: Optional[str] = None
    name: Optional[str] = None
    max_entries: Any = Field(..., alias="maxEntries")
    default_ttl_ms: Any = Field(default=0, alias="defaultTtlMs")
    eviction_policy: str = Field(default="lru", alias="evictionPolicy")
    max_size_bytes: Any = Field(default=None, alias="maxSizeBytes")
    enabled: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateStrategyRequest(CamelModel):
    """Partial strategy update."""
    strategy_id: str = Field(..., alias="strategyId", min_length=1)
    updates: Dict[str, Any]


class InvalidateRequest(CamelModel):
    """Remove keys matching a '*' glob."""
    pattern: str
    strategy_id: Optional[str] = Field(default=None, alias="strategyId")


class InvalidateByTagsRequest(CamelModel):
    """Remove entries carrying any of tags."""
    tags: List[str]
    strategy_id: Optional[str] = Field(default=None, alias="strategyId")


class ApplyInvalidationRuleRequest(CamelModel):
    """Run a named invalidation rule against a strategy."""
    rule_id: str = Field(..., alias="ruleId", min_length=1)
    strategy_id: Optional[str] = Field(default=None, alias="strategyId")


class PurgeExpiredRequest(CamelModel):
    """Sweep expired entries, from one strategy or all."""
    strategy_id: Optional[str] = Field(default=None, alias="strategyId")


# Wire names accepted in updateStrategy.updates.
UPDATE_FIELD_ALIASES = {
    "maxEntries": "max_entries",
    "defaultTtlMs": "default_ttl_ms",
    "evictionPolicy": "eviction_policy",
    "maxSizeBytes": "max_size_bytes",
}


def normalize_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Map camelCase update keys to strategy field names; unknown keys pass through."""
    return {UPDATE_FIELD_ALIASES.get(name, name): value for name, value in updates.items()}
