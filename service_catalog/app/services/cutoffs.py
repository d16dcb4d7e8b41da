"""
Admission cutoffs. Writes also clear predictor results computed from them.
"""

from typing import Any, Dict, List, Optional

from shared.errors import NotFoundError, ValidationError
from ..caching import check_entity_key, make_key
from .base import EntityService, compact, require

CUTOFFS = "cutoffs"
FILTER_FIELDS = ("slug", "examType", "year", "branch", "quota", "course", "seatType", "subCategory", "round")
REQUIRED_FIELDS = ("examType", "year", "slug", "course", "branch", "seatType", "subCategory", "quota", "round")
# Fields shared by every item of a bulk upload.
BULK_FIELDS = ("examType", "year", "slug", "seatType", "subCategory")


def _with_int_year(document: Dict[str, Any]) -> Dict[str, Any]:
    if document.get("year") in (None, ""):
        return document
    try:
        return {**document, "year": int(document["year"])}
    except (TypeError, ValueError):
        raise ValidationError("year must be an integer", details={"year": document["year"]})


class CutoffService(EntityService):
    entity_type = "cutoff"
    activity_type = "CUTOFF"

    def describe(self, document):
        return " - ".join(str(document[field]) for field in ("slug", "branch", "round") if document.get(field))

    async def list_cutoffs(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        query = _with_int_year(compact(filters, FILTER_FIELDS))

        async def fetch():
            return await self.store.find(CUTOFFS, query, sort=[("year", -1), ("round", 1)])

        return await self.cached(make_key("cutoffs", query), fetch, "cutoffs")

    async def create_cutoff(self, data: Dict[str, Any]) -> Dict[str, Any]:
        document = _with_int_year(dict(data))
        require(document, *REQUIRED_FIELDS)
        check_entity_key(document["slug"])
        cutoff = await self.store.insert(CUTOFFS, document)
        await self.invalidate(cutoff["slug"])
        await self.record_activity("CREATE", cutoff)
        return cutoff

    async def bulk_create_cutoffs(self, common: Dict[str, Any], items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert many cutoffs sharing exam, year, college, seat type and sub-category."""
        if not isinstance(items, (list, tuple)) or not items:
            raise ValidationError("cutoffs array required")

        shared = {key: common.get(key) for key in BULK_FIELDS if common.get(key) not in (None, "")}
        documents = [_with_int_year({**shared, **item}) for item in items]
        for document in documents:
            require(document, *REQUIRED_FIELDS)
            check_entity_key(document["slug"])

        try:
            cutoffs = await self.store.insert_many(CUTOFFS, documents)
        finally:
            # A backend without atomic batches may have committed part of it.
            for slug in sorted({document["slug"] for document in documents}):
                await self.invalidate(slug)

        self.logger.info("Cutoffs bulk created", count=len(cutoffs))
        for cutoff in cutoffs:
            await self.record_activity("CREATE", cutoff)
        return cutoffs

    async def update_cutoff(self, cutoff_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        cutoff = await self.store.update_one(CUTOFFS, {"_id": cutoff_id}, _with_int_year(dict(changes)))
        if cutoff is None:
            raise NotFoundError(f"Cutoff not found: {cutoff_id}", details={"_id": cutoff_id})
        await self.invalidate(cutoff.get("slug"))
        await self.record_activity("UPDATE", cutoff, changes=changes)
        return cutoff

    async def delete_cutoff(self, cutoff_id: str) -> Dict[str, Any]:
        cutoff = await self.store.delete_one(CUTOFFS, {"_id": cutoff_id})
        if cutoff is None:
            raise NotFoundError(f"Cutoff not found: {cutoff_id}", details={"_id": cutoff_id})
        await self.invalidate(cutoff.get("slug"))
        await self.record_activity("DELETE", cutoff)
        return cutoff
