"""
College profiles.
"""

import re
from typing import Any, Dict, Optional

from shared.errors import NotFoundError, ValidationError
from ..caching import check_entity_key, make_key
from .base import EntityService, compact, page_envelope, paging, require

COLLEGES = "colleges"
FILTER_FIELDS = ("state", "city", "instituteType", "stream", "tag", "search")


class CollegeService(EntityService):
    entity_type = "college"
    activity_type = "COLLEGE_PROFILE"

    async def get_college(self, slug: str) -> Dict[str, Any]:
        """College detail by slug."""
        async def fetch():
            college = await self.store.find_one(COLLEGES, {"slug": slug})
            if college is None:
                raise NotFoundError(f"College not found: {slug}", details={"slug": slug})
            return college

        return await self.cached(make_key("college", "slug", slug), fetch, "detail")

    async def list_colleges(self, filters: Optional[Dict[str, Any]] = None, page: Any = 1, limit: Any = 10) -> Dict[str, Any]:
        """Filtered, paginated listing sorted by NIRF rank then name."""
        page, limit = paging(page, limit)
        filters = compact(filters, FILTER_FIELDS)
        query = {key: value for key, value in filters.items() if key != "search"}
        if filters.get("search"):
            term = re.escape(str(filters["search"]).strip())
            query["$or"] = [{"name": {"$regex": term}}, {"slug": {"$regex": term}}]

        async def fetch():
            total = await self.store.count_documents(COLLEGES, query)
            colleges = await self.store.find(
                COLLEGES, query, sort=[("nirf", 1), ("name", 1)], skip=(page - 1) * limit, limit=limit
            )
            return page_envelope(colleges, total, page, limit, "colleges")

        return await self.cached(make_key("colleges", filters, page, limit), fetch, "listing")

    async def create_college(self, data: Dict[str, Any]) -> Dict[str, Any]:
        require(data, "slug", "name")
        check_entity_key(data["slug"])
        if await self.store.find_one(COLLEGES, {"slug": data["slug"]}) is not None:
            raise ValidationError(f"College already exists: {data['slug']}", details={"slug": data["slug"]})

        document = dict(data)
        document.setdefault("availablePlacementReports", [])
        college = await self.store.insert(COLLEGES, document)
        self.logger.info("College created", slug=college["slug"])
        await self.invalidate(college["slug"])
        await self.record_activity("CREATE", college)
        return college

    async def update_college(self, slug: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        if "slug" in changes and changes["slug"] != slug:
            raise ValidationError("College slug cannot be changed", details={"slug": slug})

        college = await self.store.update_one(COLLEGES, {"slug": slug}, changes)
        if college is None:
            raise NotFoundError(f"College not found: {slug}", details={"slug": slug})
        await self.invalidate(slug)
        await self.record_activity("UPDATE", college, changes=changes)
        return college

    async def delete_college(self, slug: str) -> Dict[str, Any]:
        college = await self.store.delete_one(COLLEGES, {"slug": slug})
        if college is None:
            raise NotFoundError(f"College not found: {slug}", details={"slug": slug})
        self.logger.info("College deleted", slug=slug)
        await self.invalidate(slug)
        await self.record_activity("DELETE", college)
        return college
