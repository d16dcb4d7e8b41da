"""
Two-tier cache-aside read path.

Reads go Local -> Shared -> Store. A Shared hit refills Local; a Store fetch
refills both. Shared-tier failures are absorbed here and the read falls through
to the next tier; Store failures propagate and are never cached.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TYPE_CHECKING

from shared.errors import CacheTierError, NotFoundError, StoreError, ValidationError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, call_with_retry
from .key_patterns import KeyPattern
from .local_cache import LocalCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class CacheTtl:
    """Expiry in seconds for each tier."""
    local: int
    shared: int


@dataclass
class InvalidationReport:
    """What an invalidation pass removed, and which tier calls failed."""
    patterns: List[str] = field(default_factory=list)
    local_deleted: int = 0
    shared_deleted: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return self.local_deleted + self.shared_deleted


class TwoTierCache:
    """Cache-aside orchestration over a Local and a Shared tier."""

    def __init__(
        self,
        local: LocalCache,
        shared,
        *,
        metrics: Optional["MetricsCollector"] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.local = local
        self.shared = shared
        self.metrics = metrics
        self.retry_config = retry_config or RetryConfig()
        self.logger = get_logger("catalog.cache.read_through")

    def _tier_failed(self, operation: str, error: CacheTierError, **context):
        self.logger.warning(
            "Cache tier call failed",
            tier=error.tier,
            operation=operation,
            error=error.message,
            **context
        )
        if self.metrics:
            self.metrics.record_cache_error(error.tier, operation)

    def _hit(self, tier: str, key: str):
        self.logger.debug("Cache hit", tier=tier, key=key)
        if self.metrics:
            self.metrics.record_cache_hit(tier)

    async def read(self, key: str, ttl: Optional[CacheTtl] = None) -> Optional[Any]:
        """Cached value for ``key`` from the fastest tier holding it, else None."""
        value = self.local.get(key)
        if value is not None:
            self._hit(self.local.tier, key)
            return value

        try:
            value = await self.shared.get(key)
        except CacheTierError as e:
            self._tier_failed("get", e, key=key)
            return None

        if value is None:
            return None

        self._hit(self.shared.tier, key)
        self.local.set(key, value, ttl.local if ttl else None)
        return value

    async def write(self, key: str, value: Any, ttl: CacheTtl) -> bool:
        """Populate both tiers. Returns False when the value was not cached anywhere."""
        if value is None:
            return False

        stored = self.local.set(key, value, ttl.local)
        try:
            stored = await self.shared.set(key, value, ttl.shared) or stored
        except CacheTierError as e:
            self._tier_failed("set", e, key=key)
        return stored

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: CacheTtl,
    ) -> Any:
        """Cache-aside read: serve from cache, otherwise fetch from the Store and refill."""
        cached = await self.read(key, ttl)
        if cached is not None:
            return cached

        self.logger.debug("Cache miss", key=key)
        if self.metrics:
            self.metrics.record_cache_miss()

        started = time.perf_counter()
        try:
            value = await call_with_retry(
                fetch,
                config=self.retry_config,
                exceptions=(StoreError,),
                giveup=(ValidationError, NotFoundError),
                name=key.split(":", 1)[0],
            )
        except RetryError as e:
            self.logger.error("Store fetch failed", key=key, attempts=e.attempts, error=repr(e.last_exception))
            raise StoreError(
                "Store fetch failed",
                details={"key": key, "attempts": e.attempts, "cause": str(e.last_exception)}
            ) from e.last_exception
        finally:
            if self.metrics:
                self.metrics.observe_store_fetch(time.perf_counter() - started)

        await self.write(key, value, ttl)
        return value

    async def delete_exact(self, key: str) -> bool:
        """Delete ``key`` from both tiers; True when any tier held it."""
        removed = self.local.delete(key)
        try:
            removed = await self.shared.delete(key) > 0 or removed
        except CacheTierError as e:
            self._tier_failed("delete", e, key=key)
        return removed

    async def delete_by_prefix(self, pattern: str) -> int:
        """Delete by prefix or glob in both tiers; returns keys removed across tiers."""
        report = await self.invalidate([KeyPattern.prefix(pattern)])
        return report.total_deleted

    async def invalidate(self, patterns: Iterable[KeyPattern]) -> InvalidationReport:
        """Best-effort deletion of every pattern from both tiers."""
        report = InvalidationReport()
        for pattern in patterns:
            report.patterns.append(pattern.template)
            report.local_deleted += self.local.delete_matching(pattern)
            try:
                report.shared_deleted += await self.shared.delete_matching(pattern)
            except CacheTierError as e:
                self._tier_failed("delete_matching", e, pattern=pattern.template)
                report.errors.append(f"{pattern.template}: {e.message}")
        return report

    async def flush(self, families: Iterable[KeyPattern]) -> InvalidationReport:
        """Clear the Local tier and every Shared key under ``families``."""
        report = await self.invalidate(families)
        report.local_deleted += self.local.flush()
        self.logger.info(
            "Caches flushed",
            local_deleted=report.local_deleted,
            shared_deleted=report.shared_deleted,
            errors=len(report.errors)
        )
        return report
