"""
Activity log: an audit trail of catalog writes.

Every create, update and delete performed through the entity services records
one activity. Recent and per-entity listings read through the two-tier cache
and are cleared whenever a new activity lands. Logging is best-effort; a
failure is logged and never fails the write that triggered it.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from shared.errors import CatalogException, ValidationError
from ..caching import make_key
from .base import EntityService

ACTIVITIES = "activity_logs"

ACTIONS = {"CREATE": "Created", "UPDATE": "Updated", "DELETE": "Deleted"}
ENTITY_TYPES = {
    "COLLEGE_PROFILE": "College Profiles",
    "PLACEMENT": "Placements",
    "PLACEMENT_STATS": "Placement Statistics",
    "TOP_RECRUITER": "Top Recruiters",
    "NEWS": "News Articles",
    "CUTOFF": "Cutoffs",
}
ACTION_COLORS = {"CREATE": "green", "UPDATE": "blue", "DELETE": "red"}
LIMIT_CHOICES = (5, 10, 20, 50)
MAX_LIMIT = 50
TIMEFRAMES = ("today", "week", "month", "all")


def clamp_limit(limit: Any, default: int, maximum: int = MAX_LIMIT) -> int:
    """Coerce ``limit`` into [1, maximum]; unparseable values fall back to ``default``."""
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return default
    return min(max(limit, 1), maximum)


def time_ago(created_at: float, now: float) -> str:
    """Human readable age, e.g. ``"5 minutes ago"``; a week or older shows the date."""
    minutes = int((now - created_at) // 60)
    hours, days = minutes // 60, minutes // (60 * 24)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    if days < 7:
        return f"{days} day{'s' if days != 1 else ''} ago"
    return datetime.fromtimestamp(created_at, timezone.utc).date().isoformat()


def timeframe_start(timeframe: str, now: float) -> Optional[float]:
    """Epoch seconds where ``timeframe`` begins (UTC), or None for ``all``."""
    current = datetime.fromtimestamp(now, timezone.utc)
    if timeframe == "today":
        return current.replace(hour=0, minute=0, second=0, microsecond=0).timestamp()
    if timeframe == "week":
        return (current - timedelta(days=7)).timestamp()
    if timeframe == "month":
        return current.replace(day=1, hour=0, minute=0, second=0, microsecond=0).timestamp()
    if timeframe == "all":
        return None
    raise ValidationError(f"Unknown timeframe: {timeframe}", details={"known": list(TIMEFRAMES)})


class ActivityService(EntityService):
    entity_type = "activity"

    def __init__(self, *components, timer: Callable[[], float] = time.time):
        super().__init__(*components)
        self.timer = timer

    async def log_activity(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        entity_name: str,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Record one write. Returns the stored activity, or None when logging failed."""
        try:
            action, entity_type = str(action).upper(), str(entity_type).upper()
            if action not in ACTIONS or entity_type not in ENTITY_TYPES or not entity_id or not entity_name:
                raise ValidationError(
                    "Invalid activity",
                    details={"action": action, "entityType": entity_type, "entityId": entity_id}
                )

            activity = await self.store.insert(ACTIVITIES, {
                "action": action,
                "entityType": entity_type,
                "entityId": str(entity_id),
                "entityName": entity_name,
                "description": f"{ACTIONS[action]} {ENTITY_TYPES[entity_type].lower()}: {entity_name}",
                "changes": changes,
                "metadata": metadata or {},
                "createdAt": self.timer(),
            })
        except CatalogException as e:
            self.logger.error("Activity logging failed", action=action, entity_type=entity_type, error=e.message)
            return None

        await self.invalidate()
        self.logger.info("Activity logged", action=action, entity_type=entity_type, entity_name=entity_name)
        return activity

    def _presented(self, activities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # Relative ages are derived per read so cached listings never carry a stale age.
        now = self.timer()
        return [
            {
                **activity,
                "timeAgo": time_ago(activity["createdAt"], now),
                "formattedDate": datetime.fromtimestamp(activity["createdAt"], timezone.utc).isoformat(),
            }
            for activity in activities
        ]

    async def get_recent_activities(
        self,
        limit: Any = 5,
        entity_type: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Newest activities first, optionally narrowed by entity type and action."""
        limit = clamp_limit(limit, 5)
        query = {}
        if entity_type:
            query["entityType"] = entity_type.upper()
        if action:
            query["action"] = action.upper()

        async def fetch():
            return await self.store.find(ACTIVITIES, query, sort=[("createdAt", -1)], limit=limit)

        activities = await self.cached(make_key("recentActivities", limit, query), fetch, "activity")
        return self._presented(activities)

    async def get_entity_activities(self, entity_type: str, entity_id: str, limit: Any = 10) -> List[Dict[str, Any]]:
        """History of one entity, newest first."""
        limit = clamp_limit(limit, 10)
        entity_type = entity_type.upper()

        async def fetch():
            return await self.store.find(
                ACTIVITIES, {"entityType": entity_type, "entityId": entity_id},
                sort=[("createdAt", -1)], limit=limit
            )

        key = make_key("entityActivities", entity_type, entity_id, limit)
        return self._presented(await self.cached(key, fetch, "activity"))

    async def get_activity_stats(self, timeframe: str = "today") -> Dict[str, Any]:
        """Activity counts by action and entity type within ``timeframe``."""
        since = timeframe_start(timeframe, self.timer())
        query = {} if since is None else {"createdAt": {"$gte": since}}

        async def fetch():
            total = await self.store.count_documents(ACTIVITIES, query)
            by_action = await self.store.aggregate_group(ACTIVITIES, query, "action")
            by_entity = await self.store.aggregate_group(ACTIVITIES, query, "entityType")
            return {
                "total": total,
                "byAction": {group["key"]: group["count"] for group in by_action},
                "byEntityType": {group["key"]: group["count"] for group in by_entity},
                "timeframe": timeframe,
            }

        return await self.cached(make_key("activityStats", timeframe), fetch, "activity")

    @staticmethod
    def get_activity_filters() -> Dict[str, Any]:
        """Entity types, actions and page sizes a client can filter by."""
        return {
            "entityTypes": [{"value": value, "label": label} for value, label in ENTITY_TYPES.items()],
            "actions": [
                {"value": value, "label": label, "color": ACTION_COLORS[value]}
                for value, label in ACTIONS.items()
            ],
            "limits": list(LIMIT_CHOICES),
        }
