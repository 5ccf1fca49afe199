"""
Invalidation engine: caller-driven bulk removal by key pattern or tag.
"""

import re
from dataclasses import replace
import time
from typing import Callable, Dict, Iterable, List, Optional, Pattern

from shared.logging import get_logger
from shared.errors import ValidationError
from .models import InvalidationAction, InvalidationRule
from .store import CacheStore


DEFAULT_INVALIDATION_RULES = [
    InvalidationRule(
        id="user-data-invalidation",
        name="User Data Invalidation",
        pattern="user:*",
        action=InvalidationAction.INVALIDATE,
        ttl_ms=30 * 60 * 1000,
    ),
    InvalidationRule(
        id="session-data-refresh",
        name="Session Data Refresh",
        pattern="session:*",
        action=InvalidationAction.REFRESH,
        ttl_ms=60 * 60 * 1000,
    ),
    InvalidationRule(
        id="api-response-extend",
        name="API Response Extend",
        pattern="api:*",
        action=InvalidationAction.EXTEND,
        ttl_ms=2 * 60 * 60 * 1000,
    ),
]


def compile_pattern(pattern: str) -> Optional[Pattern]:
    """Translate a glob where only '*' is special into an anchored regex.

    Returns None for an empty pattern, which matches nothing.
    """
    if not pattern:
        return None
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")), re.DOTALL)


class InvalidationEngine:
    """Removes entries by glob or tag without touching the eviction counter."""

    def __init__(
        self,
        store: CacheStore,
        clock: Callable[[], float] = time.time,
        rules: Optional[Iterable[InvalidationRule]] = None,
    ):
        self.store = store
        self.clock = clock
        self.logger = get_logger("caching.invalidation")
        source = DEFAULT_INVALIDATION_RULES if rules is None else rules
        self._rules: Dict[str, InvalidationRule] = {
            rule.id: replace(rule, metadata=dict(rule.metadata)) for rule in source
        }

    def invalidate(self, pattern: str, strategy_id: str) -> int:
        """Remove every key in the strategy matching pattern."""
        if pattern is not None and not isinstance(pattern, str):
            raise ValidationError("pattern must be a string")
        regex = compile_pattern(pattern)
        if regex is None:
            self.logger.warning("Empty invalidation pattern ignored", strategy_id=strategy_id)
            return 0

        removed = self.store.remove_where(strategy_id, lambda entry: regex.fullmatch(entry.key) is not None)
        if removed:
            self.logger.info(
                "Invalidated entries by pattern",
                pattern=pattern,
                strategy_id=strategy_id,
                count=len(removed)
            )
        return len(removed)

    def invalidate_by_tags(self, tags: Iterable[str], strategy_id: str) -> int:
        """Remove every entry carrying at least one of tags."""
        if isinstance(tags, str):
            raise ValidationError("tags must be a list of strings")
        wanted = set(tags)
        if not wanted:
            return 0

        removed = self.store.remove_where(strategy_id, lambda entry: not entry.tags.isdisjoint(wanted))
        if removed:
            self.logger.info(
                "Invalidated entries by tags",
                tags=sorted(wanted),
                strategy_id=strategy_id,
                count=len(removed)
            )
        return len(removed)

    def list_rules(self) -> List[InvalidationRule]:
        return list(self._rules.values())

    def get_rule(self, rule_id: str) -> Optional[InvalidationRule]:
        return self._rules.get(rule_id)

    def apply_rule(self, rule_id: str, strategy_id: str) -> Optional[int]:
        """Run a rule against one strategy; None when the rule is unknown or disabled."""
        rule = self._rules.get(rule_id)
        if rule is None or not rule.enabled:
            return None

        if rule.action == InvalidationAction.INVALIDATE:
            return self.invalidate(rule.pattern, strategy_id)

        regex = compile_pattern(rule.pattern)
        if regex is None:
            return 0

        now = self.clock()
        affected = 0
        for entry in self.store.entries(strategy_id):
            if entry.is_expired(now) or regex.fullmatch(entry.key) is None:
                continue
            if rule.action == InvalidationAction.REFRESH:
                entry.expires_at = now + rule.ttl_ms / 1000.0
                affected += 1
            elif entry.expires_at is not None:
                entry.expires_at += rule.ttl_ms / 1000.0
                affected += 1

        self.logger.info(
            "Invalidation rule applied",
            rule_id=rule_id,
            action=rule.action.value,
            strategy_id=strategy_id,
            count=affected
        )
        return affected
