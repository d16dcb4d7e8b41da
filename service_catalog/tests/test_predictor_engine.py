"""
Unit tests for the predictor engine.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.caching import CacheTtl, LocalCache, TwoTierCache
from service_catalog.app.predictor import PredictionEngine, PredictRequest
from service_catalog.app.store import MemoryStore
from prometheus_client import CollectorRegistry

from shared.errors import StoreError, ValidationError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from shared.test_helpers import FakeClock, InMemorySharedCache, TestDataFactory

TTL = CacheTtl(local=3600, shared=86400)
RETRY = RetryConfig(max_attempts=2, base_delay=0, jitter=False)


class FailingPageStore(MemoryStore):
    """Fails every range fetch past the first page."""

    async def range_fetch(self, collection, query, offset, limit, sort=None):
        if offset > 0:
            raise StoreError("connection lost")
        return await super().range_fetch(collection, query, offset, limit, sort)


def seed():
    return {
        "colleges": TestDataFactory.create_test_colleges(),
        "cutoffs": TestDataFactory.create_test_cutoffs(),
    }


def params(**overrides):
    base = {
        "rank": 550,
        "examType": "JEE-Main",
        "seatType": "OPEN",
        "subCategory": "Gender-Neutral",
        "homeState": "Tamil Nadu",
    }
    base.update(overrides)
    return base


class TestPredictionEngine:
    """Test cases for PredictionEngine."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self):
        return MemoryStore(seed())

    @pytest.fixture
    def shared(self, clock):
        return InMemorySharedCache(timer=clock)

    @pytest.fixture
    def cache(self, clock, shared):
        return TwoTierCache(LocalCache(timer=clock), shared, retry_config=RETRY)

    @pytest.fixture
    def engine(self, store, cache):
        return PredictionEngine(store, cache, TTL, batch_size=3, retry_config=RETRY)

    @pytest.mark.asyncio
    async def test_predict_ranks_colleges(self, engine):
        page = await engine.predict(params())

        assert page.total_results == 3
        assert page.page == 1
        assert page.page_size == 20
        assert page.results[0]["slug"] == "iit-bombay"
        assert page.results[0]["round"] == "Round-2"
        assert page.results[0]["rankScore"] == pytest.approx(0.9167, abs=1e-4)

    @pytest.mark.asyncio
    async def test_fetches_in_batches_until_short_page(self, engine, store):
        await engine.predict(params())

        # 8 cutoffs in pages of 3, 3 and 2, then one lookup for college profiles.
        assert store.calls["find"] == 4

    @pytest.mark.asyncio
    async def test_exact_multiple_of_batch_size(self, store, cache):
        engine = PredictionEngine(store, cache, TTL, batch_size=4, retry_config=RETRY)

        page = await engine.predict(params())

        assert page.total_results == 3
        assert store.calls["find"] == 4

    @pytest.mark.asyncio
    async def test_second_request_served_from_cache(self, engine, store, shared):
        first = await engine.predict(params())
        calls = store.calls["find"]

        second = await engine.predict(params())

        assert second.results == first.results
        assert store.calls["find"] == calls
        assert any(key.startswith("predictor:") for key in shared.snapshot())

    @pytest.mark.asyncio
    async def test_pages_share_one_cache_entry(self, engine, store):
        full = await engine.predict(params(pageSize=100))
        calls = store.calls["find"]

        pages = []
        for number in range(1, 4):
            page = await engine.predict(params(page=number, pageSize=1))
            assert page.total_results == full.total_results
            pages.extend(page.results)

        assert pages == full.results
        assert store.calls["find"] == calls
        assert (await engine.predict(params(page=4, pageSize=1))).results == []

    @pytest.mark.asyncio
    async def test_synonym_labels_share_cache_key(self, engine, store):
        await engine.predict(params(seatType="OPEN"))
        calls = store.calls["find"]

        page = await engine.predict(params(seatType="General", homeState="tamil nadu"))

        assert store.calls["find"] == calls
        assert page.total_results == 3

    def test_cache_key_varies_by_mode_and_filters(self):
        def key(**overrides):
            request = PredictRequest.parse(params(**overrides))
            return PredictionEngine.cache_key(request, "OPEN", "GENDER-NEUTRAL")

        assert key() != key(mode="risk")
        assert key() != key(tag="iit")
        assert key() != key(feesCeiling=100000)
        assert key(tag="IIT") == key(tag="iit")
        assert key(page=2) == key(page=1)
        assert "All-India" in key(homeState=None)

    @pytest.mark.asyncio
    async def test_failed_page_aborts_without_caching(self, cache, shared):
        store = FailingPageStore(seed())
        engine = PredictionEngine(store, cache, TTL, batch_size=3, retry_config=RETRY)

        with pytest.raises(StoreError) as exc_info:
            await engine.predict(params())

        assert exc_info.value.details["attempts"] == 2
        assert shared.snapshot() == {}
        assert cache.local.keys() == []

    @pytest.mark.asyncio
    async def test_no_matching_rows(self, engine):
        page = await engine.predict(params(examType="NEET"))

        assert page.total_results == 0
        assert page.results == []

    @pytest.mark.asyncio
    async def test_unknown_seat_type_rejected(self, engine, store):
        with pytest.raises(ValidationError):
            await engine.predict(params(seatType="VIP"))

        assert store.calls["find"] == 0

    @pytest.mark.asyncio
    async def test_shared_outage_still_answers(self, engine, shared):
        shared.fail = True

        page = await engine.predict(params())

        assert page.total_results == 3

    def test_batch_size_must_be_positive(self, store, cache):
        with pytest.raises(ValueError):
            PredictionEngine(store, cache, TTL, batch_size=0)

    @pytest.mark.asyncio
    async def test_to_dict(self, engine):
        data = (await engine.predict(params(pageSize=2))).to_dict()

        assert set(data) == {"totalResults", "page", "pageSize", "results"}
        assert len(data["results"]) == 2

    @pytest.mark.asyncio
    async def test_miss_records_metrics(self, store, clock, shared):
        registry = CollectorRegistry()
        cache = TwoTierCache(
            LocalCache(timer=clock), shared, metrics=MetricsCollector("catalog", registry), retry_config=RETRY
        )
        engine = PredictionEngine(store, cache, TTL, batch_size=3, retry_config=RETRY)

        await engine.predict(params())
        await engine.predict(params())

        assert registry.get_sample_value("catalog_cache_misses_total") == 1.0
        assert registry.get_sample_value("catalog_store_fetch_seconds_count") == 1.0
        assert registry.get_sample_value("catalog_cache_hits_total", {"tier": "local"}) == 1.0
