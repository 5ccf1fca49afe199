"""
Redis tier for the caching service.

Entries are stored as JSON under cache:{strategy}:{key} with a PX expiry, and
tag membership is kept in cache-tag:{strategy}:{tag} sets so tag invalidation
does not need a keyspace scan. A tag set expires with its longest-lived
member, and tag invalidation trusts each payload's own tags over set
membership. Every call is bounded by a timeout and routed through a circuit
breaker.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import BackendTimeoutError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


ENTRY_PREFIX = "cache"
TAG_PREFIX = "cache-tag"
SCAN_PAGE_SIZE = 500

# Failures the caller may treat as a miss.
BACKEND_ERRORS = (BackendTimeoutError, CircuitBreakerOpenException, RedisError, OSError)


def escape_glob(text: str) -> str:
    """Escape Redis glob metacharacters so text matches literally."""
    return "".join("\\" + char if char in "*?[]\\" else char for char in text)


def to_redis_glob(pattern: str) -> str:
    """Translate a '*'-only glob into a Redis MATCH pattern."""
    return "*".join(escape_glob(part) for part in pattern.split("*"))


def _payload_tags(raw: Optional[str]) -> List[str]:
    """Tags recorded in a stored payload; nothing for missing or garbage values."""
    if raw is None:
        return []
    try:
        tags = json.loads(raw).get("tags")
    except (TypeError, ValueError, AttributeError):
        return []
    return [tag for tag in tags or () if isinstance(tag, str)]


class RedisBackend:
    """Remote entry storage behind a timeout and circuit breaker."""

    def __init__(
        self,
        redis_url: str,
        timeout_ms: int = 250,
        failure_threshold: int = 5,
        recovery_seconds: float = 30.0,
        client: Optional[redis.Redis] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.redis_url = redis_url
        self.timeout_ms = timeout_ms
        self.metrics = metrics
        self.logger = get_logger("caching.backend.redis")
        self.redis: Optional[redis.Redis] = client
        self.breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_seconds,
            name="redis"
        )

    async def start(self):
        """Open the connection pool."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )
        self.logger.info("Redis backend started", redis_url=self.redis_url)

    async def stop(self):
        """Close the connection pool."""
        if self.redis is not None:
            await self.redis.aclose()
            self.logger.info("Redis backend stopped")

    @staticmethod
    def entry_key(strategy_id: str, key: str) -> str:
        return f"{ENTRY_PREFIX}:{strategy_id}:{key}"

    @staticmethod
    def tag_key(strategy_id: str, tag: str) -> str:
        return f"{TAG_PREFIX}:{strategy_id}:{tag}"

    async def _bounded(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout_ms / 1000.0)

    async def _call(self, operation: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        try:
            return await self.breaker.call(self._bounded, func, *args, **kwargs)
        except asyncio.TimeoutError:
            self._record_error(operation, "timeout")
            raise BackendTimeoutError(
                "redis",
                f"{operation} exceeded {self.timeout_ms}ms",
                details={"operation": operation}
            )
        except CircuitBreakerOpenException:
            self._record_error(operation, "circuit_open")
            raise
        except (RedisError, OSError) as e:
            self._record_error(operation, type(e).__name__)
            raise

    def _record_error(self, operation: str, reason: str):
        if self.metrics:
            self.metrics.increment_counter("cache_backend_errors_total", operation=operation, reason=reason)

    async def get(self, strategy_id: str, key: str) -> Optional[Dict[str, Any]]:
        """Stored payload ({value, tags, expiresAt}) or None."""
        raw = await self._call("get", self.redis.get, self.entry_key(strategy_id, key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            self.logger.warning("Discarding undecodable remote entry", key=key, strategy_id=strategy_id)
            return None

    async def set(
        self,
        strategy_id: str,
        key: str,
        value: Any,
        ttl_ms: int = 0,
        expires_at: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> bool:
        """Write an entry; ttl_ms of 0 stores it without expiry."""
        tag_list = sorted(tags)
        entry_key = self.entry_key(strategy_id, key)
        payload = json.dumps({"value": value, "tags": tag_list, "expiresAt": expires_at})

        await self._call("set", self.redis.set, entry_key, payload, px=ttl_ms or None)
        for tag in tag_list:
            await self._call("tag", self._add_to_tag, self.tag_key(strategy_id, tag), entry_key, ttl_ms)
        return True

    async def _add_to_tag(self, tag_key: str, entry_key: str, ttl_ms: int):
        # A tag set lives as long as its longest-lived member; a member
        # without expiry keeps the set persistent.
        existed = await self.redis.exists(tag_key)
        await self.redis.sadd(tag_key, entry_key)
        if not ttl_ms:
            await self.redis.persist(tag_key)
        elif existed:
            await self.redis.pexpire(tag_key, ttl_ms, gt=True)
        else:
            await self.redis.pexpire(tag_key, ttl_ms)

    async def delete(self, strategy_id: str, key: str) -> bool:
        removed = await self._call("delete", self.redis.delete, self.entry_key(strategy_id, key))
        return bool(removed)

    async def invalidate(self, strategy_id: str, pattern: str) -> int:
        """Delete remote keys in the strategy matching a '*' glob.

        The keyspace is walked one SCAN page at a time, each page under its
        own timeout.
        """
        if not pattern:
            return 0
        match = f"{escape_glob(ENTRY_PREFIX)}:{escape_glob(strategy_id)}:{to_redis_glob(pattern)}"

        removed = 0
        cursor = 0
        while True:
            cursor, keys = await self._call("scan", self.redis.scan, cursor, match=match, count=SCAN_PAGE_SIZE)
            if keys:
                removed += await self._remove_entries(strategy_id, list(keys))
            if int(cursor) == 0:
                return removed

    async def invalidate_by_tags(self, strategy_id: str, tags: Iterable[str]) -> int:
        """Delete remote keys whose stored tags include any of tags.

        Tag sets can hold members that were since overwritten without the
        tag, or that expired; those are pruned from the sets, not deleted.
        """
        wanted = set(tags)
        tag_keys = [self.tag_key(strategy_id, tag) for tag in sorted(wanted)]
        if not tag_keys:
            return 0

        members = sorted(await self._call("sunion", self.redis.sunion, *tag_keys) or ())
        if not members:
            return 0

        payloads = await self._call("mget", self.redis.mget, members)
        doomed = [
            member for member, raw in zip(members, payloads)
            if not wanted.isdisjoint(_payload_tags(raw))
        ]
        removed = 0
        if doomed:
            removed = await self._call("delete", self.redis.delete, *doomed)
        for tag_key in tag_keys:
            await self._call("srem", self.redis.srem, tag_key, *members)
        return removed

    async def _remove_entries(self, strategy_id: str, keys: List[str]) -> int:
        payloads = await self._call("mget", self.redis.mget, keys)
        removed = await self._call("delete", self.redis.delete, *keys)
        for tag in sorted({tag for raw in payloads for tag in _payload_tags(raw)}):
            await self._call("srem", self.redis.srem, self.tag_key(strategy_id, tag), *keys)
        return removed

    async def ping(self) -> bool:
        return bool(await self._call("ping", self.redis.ping))
