"""
Shared utilities for the College Catalog service.

This package aggregates common building blocks consumed by the catalog:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request and entity correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Bounded retries and timeouts for store and cache calls
- base_service: FastAPI service scaffolding

Do not import from service_catalog into shared/.
"""
