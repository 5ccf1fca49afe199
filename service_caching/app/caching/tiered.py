"""
Local engine with an optional remote tier.

Writes go to the local engine first and are mirrored to the backend only when
they succeed locally. A local miss consults the backend and repopulates the
local entry. Backend failures are logged and treated as misses; the local
tier's answer always stands.

A remote delete or invalidation that fails is remembered per strategy. Until
a retry succeeds, read-through refuses remote values it would have removed,
so an invalidated value cannot come back from the backend.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Iterable, Optional, Pattern, Set

from shared.logging import get_logger
from ..backends.redis_backend import BACKEND_ERRORS, RedisBackend
from .engine import CacheEngine
from .invalidation import compile_pattern
from .models import CacheEntry, InvalidationAction


@dataclass
class PendingInvalidations:
    """Remote removals of one strategy that have not reached the backend."""
    keys: Set[str] = field(default_factory=set)
    patterns: Dict[str, Pattern] = field(default_factory=dict)
    tags: Set[str] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.keys or self.patterns or self.tags)

    def __len__(self) -> int:
        return len(self.keys) + len(self.patterns) + len(self.tags)

    def blocks_key(self, key: str) -> bool:
        if key in self.keys:
            return True
        return any(regex.fullmatch(key) is not None for regex in self.patterns.values())

    def blocks_tags(self, tags: Iterable[str]) -> bool:
        return not self.tags.isdisjoint(tags)


class TieredCache:
    """Async read-through/write-through wrapper around a CacheEngine."""

    def __init__(self, engine: CacheEngine, backend: Optional[RedisBackend] = None):
        self.engine = engine
        self.backend = backend
        self.logger = get_logger("caching.tiered")
        self._pending: Dict[str, PendingInvalidations] = {}

    async def _remote(self, operation: str, call: Awaitable[Any], default: Any = None) -> Any:
        try:
            return await call
        except BACKEND_ERRORS as e:
            self.logger.warning("Backend call failed, treating as miss", operation=operation, error=str(e))
            return default

    async def _remote_removal(self, strategy_id: str, operation: str, call: Awaitable[Any]) -> bool:
        try:
            await call
            return True
        except BACKEND_ERRORS as e:
            self.logger.warning(
                "Remote removal failed, blocking read-through until retried",
                operation=operation,
                strategy_id=strategy_id,
                error=str(e)
            )
            return False

    def _pending_for(self, strategy_id: str) -> PendingInvalidations:
        return self._pending.setdefault(strategy_id, PendingInvalidations())

    def pending_count(self) -> int:
        return sum(len(pending) for pending in self._pending.values())

    async def get(self, key: str, strategy_id: str) -> Optional[CacheEntry]:
        entry = self.engine.lookup(key, strategy_id)
        if entry is not None or self.backend is None:
            return entry

        pending = self._pending.get(strategy_id)
        if pending is not None and pending.blocks_key(key):
            self.logger.debug("Read-through skipped, remote removal pending", key=key, strategy_id=strategy_id)
            return None

        payload = await self._remote("get", self.backend.get(strategy_id, key))
        if not payload:
            return None

        pending = self._pending.get(strategy_id)
        if pending is not None and (pending.blocks_key(key) or pending.blocks_tags(payload.get("tags") or ())):
            self.logger.debug("Remote value discarded, remote removal pending", key=key, strategy_id=strategy_id)
            return None

        ttl_ms = 0
        expires_at = payload.get("expiresAt")
        if expires_at is not None:
            ttl_ms = int((expires_at - self.engine.clock()) * 1000)
            if ttl_ms <= 0:
                return None

        if not self.engine.set(key, payload.get("value"), strategy_id, ttl_ms=ttl_ms, tags=payload.get("tags")):
            return None
        self.logger.debug("Repopulated entry from backend", key=key, strategy_id=strategy_id)
        return self.engine.peek(key, strategy_id)

    async def set(
        self,
        key: str,
        value: Any,
        strategy_id: str,
        ttl_ms: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        stored = self.engine.set(key, value, strategy_id, ttl_ms=ttl_ms, tags=tags, metadata=metadata)
        if not stored or self.backend is None:
            return stored

        entry = self.engine.peek(key, strategy_id)
        if entry is not None:
            ttl = 0 if entry.expires_at is None else max(1, entry.remaining_ttl_ms(self.engine.clock()))
            written = await self._remote(
                "set",
                self.backend.set(
                    strategy_id,
                    key,
                    entry.value,
                    ttl_ms=ttl,
                    expires_at=entry.expires_at,
                    tags=entry.tags,
                ),
                default=False,
            )
            pending = self._pending.get(strategy_id)
            if written and pending is not None:
                # The remote copy is current again; a pending delete of it is moot.
                pending.keys.discard(key)
        return stored

    async def delete(self, key: str, strategy_id: str) -> bool:
        deleted = self.engine.delete(key, strategy_id)
        if self.backend is not None:
            await self._delete_remote(strategy_id, key)
        return deleted

    async def invalidate(self, pattern: str, strategy_id: str) -> int:
        count = self.engine.invalidate(pattern, strategy_id)
        if self.backend is not None and pattern:
            await self._invalidate_remote(strategy_id, pattern)
        return count

    async def invalidate_by_tags(self, tags: Iterable[str], strategy_id: str) -> int:
        if not isinstance(tags, str):
            tags = list(tags)
        count = self.engine.invalidate_by_tags(tags, strategy_id)
        if self.backend is not None and tags:
            await self._invalidate_tags_remote(strategy_id, set(tags))
        return count

    async def apply_invalidation_rule(self, rule_id: str, strategy_id: str) -> Optional[int]:
        count = self.engine.apply_invalidation_rule(rule_id, strategy_id)
        rule = self.engine.invalidation.get_rule(rule_id)
        if count is not None and self.backend is not None and rule.action == InvalidationAction.INVALIDATE:
            await self._invalidate_remote(strategy_id, rule.pattern)
        return count

    async def retry_pending_invalidations(self) -> int:
        """Re-run failed remote removals; returns how many are still pending."""
        if self.backend is None:
            return 0

        for strategy_id, pending in list(self._pending.items()):
            for key in sorted(pending.keys):
                await self._delete_remote(strategy_id, key)
            for pattern in sorted(pending.patterns):
                await self._invalidate_remote(strategy_id, pattern)
            if pending.tags:
                await self._invalidate_tags_remote(strategy_id, set(pending.tags))
            if not pending:
                del self._pending[strategy_id]

        remaining = self.pending_count()
        if remaining:
            self.logger.warning("Remote removals still pending", count=remaining)
        return remaining

    async def _delete_remote(self, strategy_id: str, key: str):
        if await self._remote_removal(strategy_id, "delete", self.backend.delete(strategy_id, key)):
            self._pending_for(strategy_id).keys.discard(key)
        else:
            self._pending_for(strategy_id).keys.add(key)

    async def _invalidate_remote(self, strategy_id: str, pattern: str):
        if await self._remote_removal(strategy_id, "invalidate", self.backend.invalidate(strategy_id, pattern)):
            self._pending_for(strategy_id).patterns.pop(pattern, None)
        else:
            self._pending_for(strategy_id).patterns[pattern] = compile_pattern(pattern)

    async def _invalidate_tags_remote(self, strategy_id: str, tags: Set[str]):
        call = self.backend.invalidate_by_tags(strategy_id, sorted(tags))
        if await self._remote_removal(strategy_id, "invalidate_by_tags", call):
            self._pending_for(strategy_id).tags.difference_update(tags)
        else:
            self._pending_for(strategy_id).tags.update(tags)

    async def ping(self) -> Optional[bool]:
        """None when no backend is configured."""
        if self.backend is None:
            return None
        return await self._remote("ping", self.backend.ping(), default=False)

    async def start(self):
        if self.backend is not None:
            await self.backend.start()

    async def stop(self):
        if self.backend is not None:
            await self.backend.stop()
