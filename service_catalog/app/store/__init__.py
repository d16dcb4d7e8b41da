"""
Store package for the Catalog Service.

The authoritative document store queried on cache miss. Backends:

- memory: dict-of-lists store used by tests and local runs.
- postgres: asyncpg JSONB store for deployments.
"""

from shared.config import BaseConfig
from .base import COLLECTIONS, Store
from .memory import MemoryStore
from .postgres import PostgresStore


def create_store(config: BaseConfig) -> Store:
    """Build the backend selected by ``store_backend``."""
    if config.store_backend == "memory":
        return MemoryStore()
    return PostgresStore(config.postgres_dsn, command_timeout=config.store_timeout_seconds)


__all__ = ["COLLECTIONS", "MemoryStore", "PostgresStore", "Store", "create_store"]
