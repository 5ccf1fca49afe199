"""
Caching Service package.

An in-process cache with strategy-based eviction and tagged invalidation,
exposed over a single action-dispatch HTTP resource:

- app.main: FastAPI service, action table and maintenance loop.
- app.caching: Strategy registry, entry store, eviction, invalidation,
  stats and the optimization advisor.
- app.backends: Optional Redis tier behind a timeout and circuit breaker.
- app.auth: Bearer token authentication and the admin/devops gate.

Guidelines:
- Engine operations are synchronous; only the Redis tier awaits.
- A cache miss is a normal outcome, never an application error.
"""
