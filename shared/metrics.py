"""
Shared metrics configuration for the catalog service.
"""

import threading
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, REGISTRY


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Cache metrics
        self._metrics["cache_hits_total"] = Counter(
            "catalog_cache_hits_total",
            "Total cache hits",
            ["tier"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "catalog_cache_misses_total",
            "Reads that fell through both tiers to the store",
            registry=self.registry
        )

        self._metrics["cache_errors_total"] = Counter(
            "catalog_cache_errors_total",
            "Cache tier failures absorbed at the tier boundary",
            ["tier", "operation"],
            registry=self.registry
        )

        self._metrics["invalidations_total"] = Counter(
            "catalog_invalidations_total",
            "Invalidation passes triggered by writes",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["store_fetch_seconds"] = Histogram(
            "catalog_store_fetch_seconds",
            "Store fetch duration on cache miss",
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(
            method=method, endpoint=endpoint
        ).observe(duration)

    def record_cache_hit(self, tier: str):
        self._metrics["cache_hits_total"].labels(tier=tier).inc()

    def record_cache_miss(self):
        self._metrics["cache_misses_total"].inc()

    def record_cache_error(self, tier: str, operation: str):
        self._metrics["cache_errors_total"].labels(tier=tier, operation=operation).inc()

    def record_invalidation(self, entity_type: str):
        self._metrics["invalidations_total"].labels(entity_type=entity_type).inc()

    def observe_store_fetch(self, duration: float):
        self._metrics["store_fetch_seconds"].observe(duration)

    def get_metric(self, name: str) -> Optional[Any]:
        """Get a metric by name."""
        with self._lock:
            return self._metrics.get(name)


_collectors: Dict[str, MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service.

    Collectors bound to the default registry are shared per service name, since
    prometheus_client refuses duplicate registrations.
    """
    if registry is not None:
        return MetricsCollector(service_name, registry)

    with _collectors_lock:
        if service_name not in _collectors:
            _collectors[service_name] = MetricsCollector(service_name)
        return _collectors[service_name]
