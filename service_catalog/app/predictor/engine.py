"""
College predictor engine.

Fetches every matching cutoff row in sequential pages, runs the ranking
pipeline and caches the full ranked list per query; pages are slices of that
cached list so page and page-size variations share one cache entry.
"""

import time
from typing import Any, Dict, List, Mapping, Optional, Union

from shared.errors import NotFoundError, StoreError, ValidationError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, call_with_retry
from ..caching import CacheTtl, TwoTierCache, make_key
from ..store import Store
from .models import EligibilityRow, PredictionPage, PredictRequest
from .pipeline import paginate, run_pipeline
from .rules import normalize_seat_type, normalize_sub_category

CUTOFFS = "cutoffs"
COLLEGES = "colleges"
COLLEGE_FIELDS = ("slug", "name", "location", "state", "nirf", "fees", "instituteType", "collegeWeight")
ALL_INDIA = "All-India"


class PredictionEngine:
    """Ranks colleges for a candidate rank."""

    def __init__(
        self,
        store: Store,
        cache: TwoTierCache,
        ttl: CacheTtl,
        batch_size: int = 1000,
        retry_config: Optional[RetryConfig] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.cache = cache
        self.ttl = ttl
        self.batch_size = batch_size
        self.retry_config = retry_config or RetryConfig()
        self.logger = get_logger("catalog.predictor.engine")

    @staticmethod
    def cache_key(request: PredictRequest, seat_type: str, sub_category: str) -> str:
        return make_key(
            "predictor",
            request.exam_type,
            request.rank,
            seat_type,
            sub_category,
            request.home_state.strip().upper() if request.home_state else ALL_INDIA,
            request.mode.value,
            request.tag.strip().lower() if request.tag else None,
            request.fees_ceiling,
        )

    async def predict(self, params: Union[PredictRequest, Dict[str, Any]]) -> PredictionPage:
        """Validate, serve the ranked list from cache or compute it, then paginate."""
        request = params if isinstance(params, PredictRequest) else PredictRequest.parse(params)
        seat_type, seat_labels = normalize_seat_type(request.seat_type)
        sub_category, sub_labels = normalize_sub_category(request.sub_category)
        key = self.cache_key(request, seat_type, sub_category)

        results = await self.cache.read(key, self.ttl)
        if results is None:
            metrics = self.cache.metrics
            if metrics:
                metrics.record_cache_miss()
            started = time.perf_counter()
            try:
                results = await self._compute(request, seat_labels, sub_labels)
            finally:
                if metrics:
                    metrics.observe_store_fetch(time.perf_counter() - started)
            await self.cache.write(key, results, self.ttl)

        return PredictionPage(
            total_results=len(results),
            page=request.page,
            page_size=request.page_size,
            results=paginate(results, request.page, request.page_size),
        )

    async def _compute(self, request: PredictRequest, seat_labels: List[str], sub_labels: List[str]) -> List[Dict[str, Any]]:
        started = time.perf_counter()
        documents = await self._fetch_all(CUTOFFS, {
            "examType": request.exam_type,
            "seatType": {"$in": seat_labels},
            "subCategory": {"$in": sub_labels},
        })

        colleges = await self._fetch_colleges({doc.get("slug") for doc in documents if doc.get("slug")})
        rows = []
        for document in documents:
            row = EligibilityRow.from_document(document, state=colleges.get(document.get("slug"), {}).get("state"))
            if row is not None:
                rows.append(row)

        results = run_pipeline(rows, request, colleges)
        self.logger.info(
            "Prediction computed",
            exam_type=request.exam_type,
            rank=request.rank,
            mode=request.mode.value,
            rows=len(rows),
            results=len(results),
            duration=time.perf_counter() - started
        )
        return results

    async def _fetch_all(self, collection: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Page through the Store until a short page; any failed page aborts the whole fetch."""
        documents: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = await self._retry(
                self.store.range_fetch, collection, query, offset, self.batch_size,
                name=f"{collection}.range_fetch"
            )
            documents.extend(page)
            if len(page) < self.batch_size:
                return documents
            offset += len(page)

    async def _fetch_colleges(self, slugs) -> Mapping[str, Dict[str, Any]]:
        if not slugs:
            return {}
        profiles = await self._retry(
            self.store.find, COLLEGES, {"slug": {"$in": sorted(slugs)}},
            projection=COLLEGE_FIELDS,
            name=f"{COLLEGES}.find"
        )
        return {profile["slug"]: profile for profile in profiles}

    async def _retry(self, func, *args, name: str, **kwargs) -> Any:
        try:
            return await call_with_retry(
                func, *args,
                config=self.retry_config,
                exceptions=(StoreError,),
                giveup=(ValidationError, NotFoundError),
                name=name,
                **kwargs
            )
        except RetryError as e:
            self.logger.error("Predictor store fetch failed", operation=name, attempts=e.attempts)
            raise StoreError(
                "Predictor store fetch failed",
                details={"operation": name, "attempts": e.attempts, "cause": str(e.last_exception)}
            ) from e.last_exception
