"""
Cache package for the Catalog Service.

Two tiers sit in front of the Store: a process-local TTL cache and a shared
Redis cache. Reads go through the cache-aside read path; writes clear the
affected key families through the invalidation coordinator.
"""

from .key_patterns import KeyPattern, check_entity_key, make_key
from .local_cache import LocalCache
from .redis_cache import RedisCache
from .read_through import CacheTtl, InvalidationReport, TwoTierCache
from .invalidation import DEPENDENCIES, ENTITY_PATTERNS, EntityPatterns, InvalidationCoordinator

__all__ = [
    "CacheTtl",
    "DEPENDENCIES",
    "ENTITY_PATTERNS",
    "EntityPatterns",
    "InvalidationCoordinator",
    "InvalidationReport",
    "KeyPattern",
    "LocalCache",
    "RedisCache",
    "TwoTierCache",
    "check_entity_key",
    "make_key",
]
