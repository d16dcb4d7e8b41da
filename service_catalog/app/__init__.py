"""
Catalog Service package.

- app.main: API surface, component wiring and health.
- app.caching: Local and Redis tiers, cache-aside read path, invalidation.
- app.store: Store interface with in-memory and PostgreSQL backends.
- app.predictor: College predictor rules, pipeline stages and engine.
- app.services: Entity read/write services that call the cache core.
"""
