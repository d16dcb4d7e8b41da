"""
Placement records, placement statistics and top recruiters.

Creating any of these registers the record's year on the parent college's
``availablePlacementReports``. That registration is all-or-nothing: if it
fails the new record is deleted again and DependencyUpdateError is raised.
"""

import re
from typing import Any, Dict, List, Optional

from shared.errors import DependencyUpdateError, NotFoundError, StoreError, ValidationError
from ..caching import check_entity_key, make_key
from .base import EntityService, compact, require

COLLEGES = "colleges"
MIN_YEAR = 2000
MAX_YEAR = 2030

# record kind -> (collection, entity type)
KINDS = {
    "placement": ("placements", "placement"),
    "placement_stats": ("placement_stats", "placement_stats"),
    "top_recruiter": ("top_recruiters", "top_recruiter"),
}
PLACEMENT_FILTER_FIELDS = ("slug", "year", "course", "branch")

_FOUR_DIGITS = re.compile(r"\d{4}")
_SHORT_RANGE = re.compile(r"^\s*(\d{4})\s*[-/]\s*(\d{2})\s*$")


def resolve_year(data: Dict[str, Any]) -> int:
    """Placement year from ``year`` or ``academicYear``, within the supported range.

    ``"2024-25"`` resolves to 2025 and ``"2023-2024"`` to 2024.
    """
    year: Optional[int] = None
    if data.get("year") not in (None, ""):
        try:
            year = int(data["year"])
        except (TypeError, ValueError):
            raise ValidationError("year must be an integer", details={"year": data["year"]})
    elif data.get("academicYear"):
        academic_year = str(data["academicYear"])
        short = _SHORT_RANGE.match(academic_year)
        if short:
            start = int(short.group(1))
            year = start - start % 100 + int(short.group(2))
            if year < start:
                year += 100
        else:
            groups = _FOUR_DIGITS.findall(academic_year)
            year = int(groups[-1]) if groups else None

    if year is None:
        raise ValidationError("year or academicYear is required")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(
            f"year must be between {MIN_YEAR} and {MAX_YEAR}",
            details={"year": year}
        )
    return year


class PlacementService(EntityService):
    entity_type = "placement"

    def _kind(self, kind: str):
        if kind not in KINDS:
            raise ValidationError(f"Unknown placement record kind: {kind}", details={"known": sorted(KINDS)})
        return KINDS[kind]

    def describe(self, document):
        name = " - ".join(str(document[field]) for field in ("slug", "branch") if document.get(field))
        return f"{name} ({document['year']})" if document.get("year") is not None else name

    # Reads

    async def list_placements(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        query = compact(filters, PLACEMENT_FILTER_FIELDS)
        if "year" in query:
            query["year"] = resolve_year({"year": query["year"]})

        async def fetch():
            return await self.store.find("placements", query, sort=[("year", -1), ("slug", 1)])

        return await self.cached(make_key("placements", query), fetch, "listing")

    async def list_placements_by_slug(self, slug: str) -> List[Dict[str, Any]]:
        async def fetch():
            return await self.store.find("placements", {"slug": slug}, sort=[("year", -1)])

        return await self.cached(make_key("placementsBySlug", slug), fetch, "listing")

    async def get_placement_stats(self, slug: str, year: Any = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"slug": slug}
        if year not in (None, ""):
            query["year"] = resolve_year({"year": year})

        async def fetch():
            return await self.store.find("placement_stats", query, sort=[("year", -1)])

        return await self.cached(make_key("placementStats", slug, query.get("year", "all")), fetch, "detail")

    async def get_top_recruiters(self, slug: str, year: Any) -> Dict[str, Any]:
        year = resolve_year({"year": year})

        async def fetch():
            recruiters = await self.store.find_one("top_recruiters", {"slug": slug, "year": year})
            if recruiters is None:
                raise NotFoundError("Top recruiters not found", details={"slug": slug, "year": year})
            return recruiters

        return await self.cached(make_key("topRecruiters", slug, year), fetch, "detail")

    # Writes

    async def create_placement(self, slug: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.create_record("placement", slug, data)

    async def create_placement_stats(self, slug: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.create_record("placement_stats", slug, data)

    async def create_top_recruiter(self, slug: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.create_record("top_recruiter", slug, data)

    async def create_record(self, kind: str, slug: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and register its year on the parent college."""
        collection, entity_type = self._kind(kind)
        require({"slug": slug}, "slug")
        check_entity_key(slug)
        year = resolve_year(data)

        if await self.store.find_one(COLLEGES, {"slug": slug}) is None:
            raise NotFoundError(f"College not found: {slug}", details={"slug": slug})

        record = await self.store.insert(collection, {**data, "slug": slug, "year": year})
        try:
            await self._set_year(slug, year, present=True)
        except (StoreError, NotFoundError, DependencyUpdateError) as e:
            await self._rollback_insert(collection, record, e)
            raise DependencyUpdateError(
                "Failed to register placement year on college; record rolled back",
                details={"slug": slug, "year": year, "collection": collection, "cause": str(e)}
            ) from e

        self.logger.info("Placement record created", kind=kind, slug=slug, year=year, record_id=record["_id"])
        await self.invalidate(slug, entity_type)
        await self.record_activity("CREATE", record, activity_type=entity_type.upper())
        return record

    async def update_record(self, kind: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        collection, entity_type = self._kind(kind)
        frozen = sorted({"slug", "year", "academicYear"} & set(changes))
        if frozen:
            raise ValidationError(
                "slug and year cannot be changed; delete and recreate the record",
                details={"fields": frozen}
            )

        record = await self.store.update_one(collection, {"_id": record_id}, changes)
        if record is None:
            raise NotFoundError(f"{kind} not found: {record_id}", details={"_id": record_id})
        await self.invalidate(record.get("slug"), entity_type)
        await self.record_activity("UPDATE", record, changes=changes, activity_type=entity_type.upper())
        return record

    async def delete_record(self, kind: str, record_id: str) -> Dict[str, Any]:
        """Delete a record; the last record of a year unregisters that year from the college."""
        collection, entity_type = self._kind(kind)
        record = await self.store.delete_one(collection, {"_id": record_id})
        if record is None:
            raise NotFoundError(f"{kind} not found: {record_id}", details={"_id": record_id})

        slug, year = record.get("slug"), record.get("year")
        if slug and year is not None and not await self._year_in_use(slug, year):
            try:
                await self._set_year(slug, year, present=False)
            except NotFoundError:
                self.logger.warning("Parent college missing, no year to unregister", slug=slug, year=year)
            except (StoreError, DependencyUpdateError) as e:
                await self.store.insert(collection, record)
                raise DependencyUpdateError(
                    "Failed to unregister placement year on college; record restored",
                    details={"slug": slug, "year": year, "collection": collection, "cause": str(e)}
                ) from e

        await self.invalidate(slug, entity_type)
        await self.record_activity("DELETE", record, activity_type=entity_type.upper())
        return record

    async def available_years(self, slug: str) -> List[int]:
        college = await self.store.find_one(COLLEGES, {"slug": slug}, projection=["availablePlacementReports"])
        if college is None:
            raise NotFoundError(f"College not found: {slug}", details={"slug": slug})
        return list(college.get("availablePlacementReports") or [])

    # Parent registration

    async def _year_in_use(self, slug: str, year: int) -> bool:
        for collection, _ in KINDS.values():
            if await self.store.count_documents(collection, {"slug": slug, "year": year}):
                return True
        return False

    async def _set_year(self, slug: str, year: int, present: bool):
        years = set(await self.available_years(slug))
        if (year in years) == present:
            return
        years = years | {year} if present else years - {year}
        updated = await self.store.update_one(
            COLLEGES, {"slug": slug}, {"availablePlacementReports": sorted(years, reverse=True)}
        )
        if updated is None:
            raise DependencyUpdateError(f"College disappeared during update: {slug}", details={"slug": slug})

    async def _rollback_insert(self, collection: str, record: Dict[str, Any], cause: Exception):
        self.logger.error(
            "Placement year registration failed, rolling back",
            collection=collection,
            record_id=record["_id"],
            error=str(cause)
        )
        try:
            await self.store.delete_one(collection, {"_id": record["_id"]})
        except StoreError as e:
            self.logger.error("Rollback failed", collection=collection, record_id=record["_id"], error=e.message)
