"""
Common plumbing for entity services: cached reads, write invalidation, paging.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, TYPE_CHECKING

from shared.errors import ValidationError
from shared.logging import get_logger
from ..caching import CacheTtl, InvalidationCoordinator, InvalidationReport, TwoTierCache
from ..store import Store

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .activity import ActivityService

MAX_PAGE_SIZE = 100


class EntityService:
    """Base for services that read through the cache and invalidate after writes."""

    entity_type = ""
    # Activity log type for writes; empty means writes are not logged.
    activity_type = ""

    def __init__(
        self,
        store: Store,
        cache: TwoTierCache,
        invalidator: InvalidationCoordinator,
        ttls: Mapping[str, CacheTtl],
        activity: Optional["ActivityService"] = None,
    ):
        self.store = store
        self.cache = cache
        self.invalidator = invalidator
        self.ttls = ttls
        self.activity = activity
        self.logger = get_logger(f"catalog.services.{self.entity_type}")

    async def cached(self, key: str, fetch: Callable[[], Awaitable[Any]], view: str) -> Any:
        return await self.cache.get_or_fetch(key, fetch, self.ttls[view])

    async def invalidate(self, entity_key: Optional[str] = None, entity_type: Optional[str] = None) -> InvalidationReport:
        return await self.invalidator.on_write(entity_type or self.entity_type, entity_key)

    def describe(self, document: Mapping[str, Any]) -> str:
        """Human readable name of ``document`` for the activity log."""
        for field in ("name", "title", "slug", "_id"):
            if document.get(field):
                return str(document[field])
        return self.entity_type

    async def record_activity(
        self,
        action: str,
        document: Mapping[str, Any],
        changes: Optional[Dict[str, Any]] = None,
        activity_type: Optional[str] = None,
    ):
        if self.activity is None or not (activity_type or self.activity_type):
            return None
        return await self.activity.log_activity(
            action,
            activity_type or self.activity_type,
            str(document.get("_id") or document.get("slug")),
            self.describe(document),
            changes=changes,
        )


def require(data: Mapping[str, Any], *fields: str):
    missing = [name for name in fields if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})


def paging(page: Any = 1, limit: Any = 10) -> Tuple[int, int]:
    """Validated 1-indexed page and page size."""
    try:
        page, limit = int(page), int(limit)
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers", details={"page": page, "limit": limit})
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(
            f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}",
            details={"page": page, "limit": limit}
        )
    return page, limit


def page_envelope(items, total: int, page: int, limit: int, name: str) -> Dict[str, Any]:
    return {
        name: items,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }


def compact(filters: Optional[Mapping[str, Any]], allowed) -> Dict[str, Any]:
    """Drop empty values and fields outside ``allowed``."""
    return {
        key: value for key, value in (filters or {}).items()
        if key in allowed and value not in (None, "")
    }
