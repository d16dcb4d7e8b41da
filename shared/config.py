"""
Shared configuration management for the catalog service.
"""

from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/catalog")
    store_backend: str = Field(default="postgres", pattern="^(postgres|memory)$")

    # Cache tiers
    local_cache_maxsize: int = Field(default=10000, ge=1)
    shared_cache_timeout_seconds: float = Field(default=0.5, gt=0)

    # Store hardening
    store_timeout_seconds: float = Field(default=10.0, gt=0)
    store_retry_attempts: int = Field(default=3, ge=1)
    store_retry_base_delay: float = Field(default=0.1, ge=0)

    # Predictor
    predictor_batch_size: int = Field(default=1000, ge=1)

    # TTLs in seconds, (local, shared)
    ttl_dashboard_local: int = Field(default=300, ge=1)
    ttl_dashboard_shared: int = Field(default=600, ge=1)
    ttl_listing_local: int = Field(default=300, ge=1)
    ttl_listing_shared: int = Field(default=600, ge=1)
    ttl_detail_local: int = Field(default=300, ge=1)
    ttl_detail_shared: int = Field(default=3600, ge=1)
    ttl_cutoffs_local: int = Field(default=86400, ge=1)
    ttl_cutoffs_shared: int = Field(default=86400, ge=1)
    ttl_predictor_local: int = Field(default=3600, ge=1)
    ttl_predictor_shared: int = Field(default=86400, ge=1)
    ttl_activity_local: int = Field(default=300, ge=1)
    ttl_activity_shared: int = Field(default=600, ge=1)

    def ttl_pairs(self) -> Dict[str, tuple]:
        """TTL pairs keyed by view family."""
        return {
            "dashboard": (self.ttl_dashboard_local, self.ttl_dashboard_shared),
            "listing": (self.ttl_listing_local, self.ttl_listing_shared),
            "detail": (self.ttl_detail_local, self.ttl_detail_shared),
            "cutoffs": (self.ttl_cutoffs_local, self.ttl_cutoffs_shared),
            "predictor": (self.ttl_predictor_local, self.ttl_predictor_shared),
            "activity": (self.ttl_activity_local, self.ttl_activity_shared),
        }


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
