"""
Dashboard aggregates over colleges and news.
"""

from typing import Any, Dict, List

from ..caching import make_key
from .base import EntityService

COLLEGES = "colleges"
NEWS = "news"
CLASSIFIED_FIELDS = ("instituteType", "tag", "stream")
STREAMS = {
    "engineering": "engineering",
    "medical": "medical",
    "management": "management|mba|business",
}


def _any_field_matches(pattern: str) -> Dict[str, Any]:
    return {"$or": [{field: {"$regex": pattern}} for field in CLASSIFIED_FIELDS]}


def _percentage(count: int, total: int) -> float:
    return round(count / total * 100, 1) if total else 0.0


class DashboardService(EntityService):
    entity_type = "dashboard"

    async def get_stats(self) -> Dict[str, Any]:
        """College counts per stream with percentages, plus the news total.

        "other" counts colleges matching none of the streams.
        """
        async def fetch():
            total = await self.store.count_documents(COLLEGES)
            stats: Dict[str, Any] = {}
            for name, pattern in STREAMS.items():
                count = await self.store.count_documents(COLLEGES, _any_field_matches(pattern))
                stats[name] = {"count": count, "percentage": _percentage(count, total)}

            classified = await self.store.count_documents(COLLEGES, _any_field_matches("|".join(STREAMS.values())))
            other = total - classified
            stats["other"] = {"count": other, "percentage": _percentage(other, total)}
            stats["totalColleges"] = total
            stats["totalNewsArticles"] = await self.store.count_documents(NEWS)
            return stats

        return await self.cached(make_key("dashboard", "stats"), fetch, "dashboard")

    async def get_college_type_stats(self) -> List[Dict[str, Any]]:
        """College counts per institute type, largest first."""
        async def fetch():
            return await self.store.aggregate_group(COLLEGES, {}, "instituteType")

        return await self.cached(make_key("dashboard", "college-types"), fetch, "dashboard")
