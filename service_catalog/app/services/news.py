"""
News articles.
"""

from typing import Any, Dict, List, Optional

from shared.errors import NotFoundError, ValidationError
from ..caching import check_entity_key, make_key
from .base import EntityService, paging, require

NEWS = "news"
LIST_FIELDS = ("slug", "title", "summary", "category", "trending", "coverImage", "publishDate", "readTime")


class NewsService(EntityService):
    entity_type = "news"
    activity_type = "NEWS"

    async def list_news(self, page: Any = 1, limit: Any = 10, category: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest first, optionally within one category."""
        page, limit = paging(page, limit)
        query = {"category": category} if category else {}

        async def fetch():
            return await self.store.find(
                NEWS, query, projection=LIST_FIELDS, sort=[("publishDate", -1)],
                skip=(page - 1) * limit, limit=limit
            )

        return await self.cached(make_key("news", "list", query, page, limit), fetch, "listing")

    async def trending_news(self, limit: Any = 5) -> List[Dict[str, Any]]:
        _, limit = paging(1, limit)

        async def fetch():
            return await self.store.find(
                NEWS, {"trending": True}, projection=LIST_FIELDS, sort=[("publishDate", -1)], limit=limit
            )

        return await self.cached(make_key("news", "trending", limit), fetch, "listing")

    async def get_news(self, slug: str) -> Dict[str, Any]:
        async def fetch():
            article = await self.store.find_one(NEWS, {"slug": slug})
            if article is None:
                raise NotFoundError(f"Article not found: {slug}", details={"slug": slug})
            return article

        return await self.cached(make_key("news", "slug", slug), fetch, "detail")

    async def create_news(self, data: Dict[str, Any]) -> Dict[str, Any]:
        require(data, "slug", "title")
        check_entity_key(data["slug"])
        if await self.store.find_one(NEWS, {"slug": data["slug"]}) is not None:
            raise ValidationError(f"Article already exists: {data['slug']}", details={"slug": data["slug"]})
        article = await self.store.insert(NEWS, dict(data))
        await self.invalidate(article["slug"])
        await self.record_activity("CREATE", article)
        return article

    async def update_news(self, slug: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        if "slug" in changes and changes["slug"] != slug:
            raise ValidationError("Article slug cannot be changed", details={"slug": slug})
        article = await self.store.update_one(NEWS, {"slug": slug}, changes)
        if article is None:
            raise NotFoundError(f"Article not found: {slug}", details={"slug": slug})
        await self.invalidate(slug)
        await self.record_activity("UPDATE", article, changes=changes)
        return article

    async def delete_news(self, slug: str) -> Dict[str, Any]:
        article = await self.store.delete_one(NEWS, {"slug": slug})
        if article is None:
            raise NotFoundError(f"Article not found: {slug}", details={"slug": slug})
        await self.invalidate(slug)
        await self.record_activity("DELETE", article)
        return article
