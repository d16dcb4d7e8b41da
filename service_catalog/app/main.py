"""
Catalog service: HTTP surface over the cache core, the predictor and the entity services.
"""

from typing import Any, Dict, Optional

from fastapi import Body, Query
from pydantic import BaseModel, ConfigDict, Field
from prometheus_client import CollectorRegistry

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.retry import RetryConfig

from .caching import (
    CacheTtl, InvalidationCoordinator, KeyPattern, LocalCache, RedisCache, TwoTierCache,
)
from .predictor import PredictionEngine, PredictRequest
from .services.activity import clamp_limit
from .services import (
    ActivityService, CollegeService, CutoffService, DashboardService, NewsService, PlacementService,
)
from .store import Store, create_store

SERVICE_NAME = "catalog"
SERVICE_PORT = 8020


class InvalidateRequest(BaseModel):
    """Request model for an explicit invalidation."""
    model_config = ConfigDict(populate_by_name=True)

    entity_type: str = Field(..., alias="entityType", description="Registered entity type")
    entity_key: Optional[str] = Field(None, alias="entityKey", description="Slug or id of the written entity")


class CatalogService(BaseService):
    """Catalog service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[Store] = None,
        shared_cache: Any = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        config = config or get_config(SERVICE_NAME, SERVICE_PORT)
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config, registry=registry)

        # Initialize components
        self.store = store or create_store(self.config)
        self.local_cache = LocalCache(maxsize=self.config.local_cache_maxsize)
        self.shared_cache = shared_cache or RedisCache(
            self.config.redis_url, timeout=self.config.shared_cache_timeout_seconds
        )
        retry_config = RetryConfig(
            max_attempts=self.config.store_retry_attempts,
            base_delay=self.config.store_retry_base_delay,
            timeout=self.config.store_timeout_seconds,
        )
        self.cache = TwoTierCache(
            self.local_cache, self.shared_cache, metrics=self.metrics, retry_config=retry_config
        )
        self.invalidator = InvalidationCoordinator(self.cache, metrics=self.metrics)

        self.ttls: Dict[str, CacheTtl] = {
            view: CacheTtl(local, shared) for view, (local, shared) in self.config.ttl_pairs().items()
        }
        self.predictor = PredictionEngine(
            self.store, self.cache, self.ttls["predictor"],
            batch_size=self.config.predictor_batch_size, retry_config=retry_config
        )

        components = (self.store, self.cache, self.invalidator, self.ttls)
        self.activity = ActivityService(*components)
        self.colleges = CollegeService(*components, activity=self.activity)
        self.placements = PlacementService(*components, activity=self.activity)
        self.cutoffs = CutoffService(*components, activity=self.activity)
        self.news = NewsService(*components, activity=self.activity)
        self.dashboard = DashboardService(*components)

        self._setup_catalog_routes()

    async def on_startup(self):
        await self.store.start()
        await self.shared_cache.start()
        self.logger.info("Catalog service started", store_backend=self.config.store_backend)

    async def on_shutdown(self):
        await self.shared_cache.stop()
        await self.store.stop()
        self.logger.info("Catalog service stopped")

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "store": "ok" if await self.store.health_check() else "error",
            "shared_cache": "ok" if await self.shared_cache.health_check() else "error",
        }

    def _setup_catalog_routes(self):
        """Set up catalog-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "College Catalog - Catalog Service",
                "version": "1.0.0",
                "capabilities": ["two_tier_cache", "invalidation", "predictor", "activity_log"]
            }

        @self.app.get("/predict")
        async def predict(
            rank: Optional[str] = Query(None, description="Candidate rank"),
            exam_type: Optional[str] = Query(None, alias="examType"),
            seat_type: Optional[str] = Query(None, alias="seatType"),
            sub_category: Optional[str] = Query(None, alias="subCategory"),
            home_state: Optional[str] = Query(None, alias="homeState"),
            mode: Optional[str] = Query(None),
            tag: Optional[str] = Query(None),
            fees_ceiling: Optional[str] = Query(None, alias="feesCeiling"),
            page: Optional[str] = Query(None),
            page_size: Optional[str] = Query(None, alias="pageSize"),
        ):
            """Ranked college predictions for a candidate.

            Parameters are validated by the predictor request model so every
            violation surfaces as a VALIDATION_ERROR.
            """
            request = PredictRequest.parse({
                "rank": rank,
                "examType": exam_type,
                "seatType": seat_type,
                "subCategory": sub_category,
                "homeState": home_state,
                "mode": mode,
                "tag": tag,
                "feesCeiling": fees_ceiling,
                "page": page,
                "pageSize": page_size,
            })
            result = await self.predictor.predict(request)
            return result.to_dict()

        @self.app.get("/dashboard/stats")
        async def dashboard_stats():
            return await self.dashboard.get_stats()

        @self.app.get("/dashboard/college-types")
        async def college_type_stats():
            return await self.dashboard.get_college_type_stats()

        @self.app.get("/colleges")
        async def list_colleges(
            state: Optional[str] = Query(None),
            city: Optional[str] = Query(None),
            institute_type: Optional[str] = Query(None, alias="instituteType"),
            stream: Optional[str] = Query(None),
            tag: Optional[str] = Query(None),
            search: Optional[str] = Query(None),
            page: int = Query(1),
            limit: int = Query(10),
        ):
            filters = {
                "state": state, "city": city, "instituteType": institute_type,
                "stream": stream, "tag": tag, "search": search,
            }
            return await self.colleges.list_colleges(filters, page, limit)

        @self.app.get("/colleges/{slug}")
        async def get_college(slug: str):
            return await self.colleges.get_college(slug)

        @self.app.post("/colleges", status_code=201)
        async def create_college(payload: Dict[str, Any] = Body(...)):
            return await self.colleges.create_college(payload)

        @self.app.patch("/colleges/{slug}")
        async def update_college(slug: str, payload: Dict[str, Any] = Body(...)):
            return await self.colleges.update_college(slug, payload)

        @self.app.post("/colleges/{slug}/placements", status_code=201)
        async def create_placement(slug: str, payload: Dict[str, Any] = Body(...)):
            return await self.placements.create_placement(slug, payload)

        @self.app.get("/cutoffs")
        async def list_cutoffs(
            slug: Optional[str] = Query(None),
            exam_type: Optional[str] = Query(None, alias="examType"),
            year: Optional[int] = Query(None),
            branch: Optional[str] = Query(None),
            quota: Optional[str] = Query(None),
            course: Optional[str] = Query(None),
            seat_type: Optional[str] = Query(None, alias="seatType"),
            sub_category: Optional[str] = Query(None, alias="subCategory"),
            round: Optional[str] = Query(None),
        ):
            filters = {
                "slug": slug, "examType": exam_type, "year": year, "branch": branch,
                "quota": quota, "course": course, "seatType": seat_type,
                "subCategory": sub_category, "round": round,
            }
            return await self.cutoffs.list_cutoffs(filters)

        @self.app.post("/cutoffs", status_code=201)
        async def create_cutoffs(payload: Dict[str, Any] = Body(...)):
            """Create one cutoff, or many when the body carries a ``cutoffs`` array."""
            if "cutoffs" in payload:
                common = {key: value for key, value in payload.items() if key != "cutoffs"}
                return await self.cutoffs.bulk_create_cutoffs(common, payload["cutoffs"])
            return await self.cutoffs.create_cutoff(payload)

        @self.app.get("/activities/recent")
        async def recent_activities(
            limit: Optional[str] = Query(None),
            entity_type: Optional[str] = Query(None, alias="entityType"),
            action: Optional[str] = Query(None),
        ):
            activities = await self.activity.get_recent_activities(limit, entity_type, action)
            filters = {key: value.upper() for key, value in (("entityType", entity_type), ("action", action)) if value}
            return {
                "activities": activities,
                "count": len(activities),
                "limit": clamp_limit(limit, 5),
                "filters": filters,
            }

        @self.app.get("/activities/entity/{entity_type}/{entity_id}")
        async def entity_activities(entity_type: str, entity_id: str, limit: Optional[str] = Query(None)):
            activities = await self.activity.get_entity_activities(entity_type, entity_id, limit)
            return {
                "activities": activities,
                "count": len(activities),
                "entityType": entity_type.upper(),
                "entityId": entity_id,
                "limit": clamp_limit(limit, 10),
            }

        @self.app.get("/activities/stats")
        async def activity_stats(timeframe: str = Query("today")):
            return await self.activity.get_activity_stats(timeframe)

        @self.app.get("/activities/filters")
        async def activity_filters():
            return self.activity.get_activity_filters()

        @self.app.delete("/cache")
        async def delete_cache(pattern: str = Query(..., min_length=1)):
            """Delete cached keys by prefix or ``*`` glob from both tiers."""
            deleted = await self.cache.delete_by_prefix(pattern)
            return {"pattern": KeyPattern.prefix(pattern).template, "deleted": deleted}

        @self.app.post("/cache/invalidate")
        async def invalidate(request: InvalidateRequest):
            report = await self.invalidator.on_write(request.entity_type, request.entity_key)
            return {
                "entityType": request.entity_type,
                "entityKey": request.entity_key,
                "patterns": report.patterns,
                "localDeleted": report.local_deleted,
                "sharedDeleted": report.shared_deleted,
                "errors": report.errors,
            }

        @self.app.post("/cache/flush")
        async def flush():
            report = await self.invalidator.flush()
            return {
                "localDeleted": report.local_deleted,
                "sharedDeleted": report.shared_deleted,
                "errors": report.errors,
            }


def create_app(**components):
    """Create catalog service application."""
    service = CatalogService(**components)
    return service.app


if __name__ == "__main__":
    service = CatalogService()
    service.run()
