"""
Caching service: action-dispatch HTTP API over the cache engine.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Tuple, Type

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import CacheLayerException, NotFoundError, ValidationError
from shared.logging import set_user_context

from .auth.gate import ADMIN_OR_DEVOPS, Capability, TokenAuthenticator, authorize
from .backends.redis_backend import RedisBackend
from .caching import AdvisorPolicy, CacheEngine, Impact
from .caching.tiered import TieredCache
from .schemas import (
    ApplyInvalidationRuleRequest, CreateStrategyRequest, InvalidateByTagsRequest,
    InvalidateRequest, PurgeExpiredRequest, SetRequest, UpdateStrategyRequest,
    normalize_updates
)


API_PATH = "/api/caching"

Handler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class Action:
    """A dispatchable action and the capabilities it requires."""
    handler: Handler
    requires: FrozenSet[Capability] = frozenset()


def _parse(model: Type[BaseModel], params: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(params)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid request body",
            details={
                "errors": [
                    {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]
            }
        )


def _required(params: Dict[str, Any], name: str, message: str) -> str:
    value = params.get(name)
    if not value:
        raise ValidationError(message)
    return value


class CachingService(BaseService):
    """Caching service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        engine: Optional[CacheEngine] = None,
        backend: Optional[RedisBackend] = None,
    ):
        super().__init__("caching", 8020, config or get_config("caching", 8020))

        policy = AdvisorPolicy(
            min_sample_size=self.config.advisor_min_sample_size,
            low_hit_rate=self.config.advisor_low_hit_rate,
            eviction_pressure_ratio=self.config.advisor_eviction_pressure_ratio,
            underuse_ratio=self.config.advisor_underuse_ratio,
        )
        self.engine = engine or CacheEngine(metrics=self.metrics, advisor_policy=policy)
        if self.config.seed_default_strategies:
            self.engine.seed_default_strategies()

        if backend is None and self.config.backend_enabled:
            backend = RedisBackend(
                self.config.redis_url,
                timeout_ms=self.config.backend_timeout_ms,
                failure_threshold=self.config.backend_failure_threshold,
                recovery_seconds=self.config.backend_recovery_seconds,
                metrics=self.metrics,
            )
        self.cache = TieredCache(self.engine, backend)

        self.authenticator = TokenAuthenticator(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            audience=self.config.jwt_audience,
        )
        self.actions: Dict[Tuple[str, str], Action] = self._build_actions()
        self._maintenance_task: Optional[asyncio.Task] = None

        self._setup_caching_routes()

    def _build_actions(self) -> Dict[Tuple[str, str], Action]:
        return {
            ("GET", "get"): Action(self._get),
            ("GET", "getStrategies"): Action(self._get_strategies),
            ("GET", "getStrategy"): Action(self._get_strategy),
            ("GET", "getStats"): Action(self._get_stats),
            ("GET", "getAllStats"): Action(self._get_all_stats),
            ("GET", "getInvalidationRules"): Action(self._get_invalidation_rules, ADMIN_OR_DEVOPS),
            ("GET", "getOptimizations"): Action(self._get_optimizations, ADMIN_OR_DEVOPS),
            ("GET", "getMemoryCacheEntries"): Action(self._get_memory_cache_entries, ADMIN_OR_DEVOPS),
            ("POST", "set"): Action(self._set),
            ("POST", "createStrategy"): Action(self._create_strategy, ADMIN_OR_DEVOPS),
            ("POST", "invalidate"): Action(self._invalidate),
            ("POST", "invalidateByTags"): Action(self._invalidate_by_tags),
            ("POST", "generateOptimizations"): Action(self._generate_optimizations, ADMIN_OR_DEVOPS),
            ("POST", "applyInvalidationRule"): Action(self._apply_invalidation_rule, ADMIN_OR_DEVOPS),
            ("POST", "purgeExpired"): Action(self._purge_expired, ADMIN_OR_DEVOPS),
            ("PUT", "updateStrategy"): Action(self._update_strategy, ADMIN_OR_DEVOPS),
            ("DELETE", "delete"): Action(self._delete),
            ("DELETE", "applyOptimization"): Action(self._apply_optimization, ADMIN_OR_DEVOPS),
        }

    def _setup_caching_routes(self):
        """Set up caching-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "caching",
                "message": "Caching Service",
                "version": "1.0.0",
                "capabilities": ["strategies", "eviction", "invalidation", "optimization"]
            }

        @self.app.get(API_PATH)
        async def caching_get(request: Request):
            """Read-only actions, selected by the action query parameter."""
            return await self._dispatch(request, "GET")

        @self.app.post(API_PATH)
        async def caching_post(request: Request):
            """Write actions, selected by the action body field."""
            return await self._dispatch(request, "POST")

        @self.app.put(API_PATH)
        async def caching_put(request: Request):
            """Strategy updates."""
            return await self._dispatch(request, "PUT")

        @self.app.delete(API_PATH)
        async def caching_delete(request: Request):
            """Key deletion and optimization apply."""
            return await self._dispatch(request, "DELETE")

    async def _read_params(self, request: Request, method: str) -> Dict[str, Any]:
        if method in ("GET", "DELETE"):
            return dict(request.query_params)

        raw = await request.body()
        try:
            body = json.loads(raw) if raw else {}
        except ValueError:
            raise ValidationError("Request body must be valid JSON")
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    async def _dispatch(self, request: Request, method: str):
        """Authenticate, resolve the action, check its capabilities and run it."""
        try:
            identity = self.authenticator.authenticate(request.headers.get("Authorization"))
            set_user_context(identity.user_id)

            params = await self._read_params(request, method)
            name = params.pop("action", None)
            action = self.actions.get((method, name))
            if action is None:
                raise ValidationError("Invalid action", details={"action": name, "method": method})

            authorize(identity, action.requires)
            result = {"success": True}
            result.update(await action.handler(params))
            return result

        except CacheLayerException:
            raise
        except Exception as e:
            self.logger.error("Caching API error", method=method, error=str(e), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={"error": "Internal Server Error", "details": str(e)}
            )

    def _strategy_id(self, value: Optional[str]) -> str:
        return value or self.config.default_strategy_id

    # GET actions

    async def _get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        key = _required(params, "key", "Key parameter required")
        entry = await self.cache.get(key, self._strategy_id(params.get("strategyId")))
        return {
            "key": key,
            "value": entry.value if entry is not None else None,
            "found": entry is not None,
        }

    async def _get_strategies(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"strategies": [strategy.to_dict() for strategy in self.engine.list_strategies()]}

    async def _get_strategy(self, params: Dict[str, Any]) -> Dict[str, Any]:
        strategy_id = _required(params, "strategyId", "StrategyId parameter required")
        strategy = self.engine.get_strategy(strategy_id)
        if strategy is None:
            raise NotFoundError("Strategy not found", details={"strategyId": strategy_id})
        return {"strategy": strategy.to_dict()}

    async def _get_stats(self, params: Dict[str, Any]) -> Dict[str, Any]:
        strategy_id = _required(params, "strategyId", "StrategyId parameter required")
        stats = self.engine.get_stats(strategy_id)
        if stats is None:
            raise NotFoundError("Stats not found", details={"strategyId": strategy_id})
        return {"stats": stats.to_dict()}

    async def _get_all_stats(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "stats": {
                strategy_id: stats.to_dict()
                for strategy_id, stats in self.engine.get_all_stats().items()
            }
        }

    async def _get_invalidation_rules(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"rules": [rule.to_dict() for rule in self.engine.list_invalidation_rules()]}

    async def _get_optimizations(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"optimizations": [s.to_dict() for s in self.engine.list_optimizations()]}

    async def _get_memory_cache_entries(self, params: Dict[str, Any]) -> Dict[str, Any]:
        entries = self.engine.list_entries(params.get("strategyId"))
        return {"entries": [entry.to_dict() for entry in entries], "count": len(entries)}

    # POST actions

    async def _set(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(SetRequest, params)
        success = await self.cache.set(
            request.key,
            request.value,
            self._strategy_id(request.strategy_id),
            ttl_ms=request.options.ttl_ms,
            tags=request.options.tags,
            metadata=request.options.metadata,
        )
        return {"success": success, "message": "Value cached" if success else "Failed to cache"}

    async def _create_strategy(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(CreateStrategyRequest, params)
        strategy = self.engine.create_strategy(
            strategy_id=request.id,
            name=request.name,
            max_entries=request.max_entries,
            default_ttl_ms=request.default_ttl_ms,
            eviction_policy=request.eviction_policy,
            max_size_bytes=request.max_size_bytes,
            enabled=request.enabled,
            metadata=request.metadata,
        )
        return {"strategy": strategy.to_dict()}

    async def _invalidate(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(InvalidateRequest, params)
        count = await self.cache.invalidate(request.pattern, self._strategy_id(request.strategy_id))
        return {"count": count, "message": f"{count} entries invalidated"}

    async def _invalidate_by_tags(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(InvalidateByTagsRequest, params)
        count = await self.cache.invalidate_by_tags(request.tags, self._strategy_id(request.strategy_id))
        return {"count": count, "message": f"{count} entries invalidated"}

    async def _generate_optimizations(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"optimizations": [s.to_dict() for s in self.engine.generate_optimizations()]}

    async def _apply_invalidation_rule(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(ApplyInvalidationRuleRequest, params)
        count = await self.cache.apply_invalidation_rule(request.rule_id, self._strategy_id(request.strategy_id))
        if count is None:
            raise NotFoundError("Invalidation rule not found", details={"ruleId": request.rule_id})
        return {"count": count, "message": f"{count} entries affected"}

    async def _purge_expired(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(PurgeExpiredRequest, params)
        count = self.engine.purge_expired(request.strategy_id)
        return {"count": count, "message": f"{count} expired entries purged"}

    # PUT actions

    async def _update_strategy(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(UpdateStrategyRequest, params)
        success = self.engine.update_strategy(request.strategy_id, normalize_updates(request.updates))
        return {"success": success, "message": "Strategy updated" if success else "Strategy not found"}

    # DELETE actions

    async def _delete(self, params: Dict[str, Any]) -> Dict[str, Any]:
        key = _required(params, "key", "Key parameter required")
        success = await self.cache.delete(key, self._strategy_id(params.get("strategyId")))
        return {"success": success, "message": "Entry deleted" if success else "Entry not found"}

    async def _apply_optimization(self, params: Dict[str, Any]) -> Dict[str, Any]:
        optimization_id = _required(params, "optimizationId", "OptimizationId parameter required")
        success = self.engine.apply_optimization(optimization_id)
        return {"success": success, "message": "Optimization applied" if success else "Optimization failed"}

    # Maintenance

    def run_maintenance(self) -> Dict[str, int]:
        """Purge expired entries, refresh suggestions and optionally apply high-impact ones."""
        purged = self.engine.purge_expired()
        suggestions = self.engine.generate_optimizations()

        applied = 0
        if self.config.auto_apply_optimizations:
            for suggestion in suggestions:
                if suggestion.estimated_impact == Impact.HIGH and self.engine.apply_optimization(suggestion.id):
                    applied += 1

        self.logger.info(
            "Maintenance run completed",
            purged=purged,
            suggestions=len(suggestions),
            applied=applied
        )
        return {"purged": purged, "suggestions": len(suggestions), "applied": applied}

    async def _maintenance_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                self.run_maintenance()
                await self.cache.retry_pending_invalidations()
            except Exception as e:
                self.logger.error("Maintenance run failed", error=str(e), exc_info=True)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check caching service dependencies."""
        healthy = await self.cache.ping()
        if healthy is None:
            return {}
        return {"redis": "ok" if healthy else "error"}

    async def start(self):
        """Start caching service components."""
        await self.cache.start()

        interval = self.config.maintenance_interval_seconds
        if interval > 0:
            self._maintenance_task = asyncio.create_task(self._maintenance_loop(interval))

        self.logger.info(
            "Caching service started",
            strategies=len(self.engine.list_strategies()),
            backend_enabled=self.cache.backend is not None,
            maintenance_interval_seconds=interval
        )

    async def stop(self):
        """Stop caching service components."""
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        await self.cache.stop()
        self.logger.info("Caching service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create caching service application."""
    service = CachingService(config)
    return service.app


if __name__ == "__main__":
    service = CachingService()
    service.run()
