"""
Unit tests for the PostgreSQL store backend.
"""

import json
from contextlib import asynccontextmanager

import asyncpg
import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.store import PostgresStore, create_store
from service_catalog.app.store.postgres import SqlFilter
from shared.config import get_config
from shared.errors import StoreError, ValidationError


class FakePool:
    """Pool stand-in handing out one mocked connection."""

    def __init__(self):
        self.conn = AsyncMock()
        self.conn.transaction = self.transaction
        self.closed = False
        self.transactions = []

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
        except Exception:
            self.transactions.append("rollback")
            raise
        self.transactions.append("commit")

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def close(self):
        self.closed = True


def body_rows(*documents):
    return [{"body": json.dumps(document)} for document in documents]


class TestSqlFilter:
    """Test cases for filter translation."""

    @pytest.fixture
    def sql(self):
        return SqlFilter(["colleges"])

    def test_empty_filter(self, sql):
        assert sql.where({}) == "TRUE"
        assert sql.where(None) == "TRUE"

    def test_equality_uses_containment(self, sql):
        assert sql.where({"slug": "iit-bombay"}) == "body @> $2::jsonb"
        assert json.loads(sql.params[1]) == {"slug": "iit-bombay"}

    def test_dotted_equality_nests(self, sql):
        sql.where({"stats.year": 2024})

        assert json.loads(sql.params[1]) == {"stats": {"year": 2024}}

    def test_in(self, sql):
        clause = sql.where({"seatType": {"$in": ["OPEN", "GEN"]}})

        assert clause == "COALESCE($3::jsonb @> (body #> $2::text[]), FALSE)"
        assert sql.params[1] == ["seatType"]
        assert json.loads(sql.params[2]) == ["OPEN", "GEN"]

    def test_range_guards_type(self, sql):
        clause = sql.where({"nirf": {"$gte": 1}})

        assert "jsonb_typeof(body #> $2::text[]) = 'number'" in clause
        assert "::float8 >= $3::float8" in clause
        assert sql.params[2] == 1.0

    def test_regex_is_case_insensitive(self, sql):
        clause = sql.where({"name": {"$regex": "bombay"}})

        assert "~* $3::text" in clause
        assert "'string'" in clause

    def test_or_and_conjunction(self, sql):
        clause = sql.where({"examType": "JEE-Main", "$or": [{"slug": "a"}, {"slug": "b"}]})

        assert clause == "body @> $2::jsonb AND (body @> $3::jsonb OR body @> $4::jsonb)"

    def test_empty_or_matches_nothing(self, sql):
        assert sql.where({"$or": []}) == "FALSE"

    def test_unsupported_operator(self, sql):
        with pytest.raises(ValidationError):
            sql.where({"nirf": {"$gt": 1}})

    def test_order_by_always_ends_with_id(self, sql):
        assert sql.order_by(None) == "id ASC"
        assert sql.order_by([("year", -1), ("_id", 1)]) == "body #> $2::text[] DESC NULLS LAST, id ASC, id ASC"
        assert sql.order_by([("nirf", 1)]) == "body #> $3::text[] ASC NULLS FIRST, id ASC"


class TestPostgresStore:
    """Test cases for PostgresStore."""

    @pytest.fixture
    def pool(self):
        return FakePool()

    @pytest.fixture
    def store(self, pool):
        return PostgresStore("postgres://localhost/catalog", pool=pool)

    @pytest.mark.asyncio
    async def test_start_creates_table(self, store, pool):
        await store.start()

        statements = " ".join(call.args[0] for call in pool.conn.execute.await_args_list)
        assert "CREATE TABLE IF NOT EXISTS documents" in statements
        assert "USING GIN" in statements

    @pytest.mark.asyncio
    async def test_start_failure_raises_store_error(self, store, pool):
        pool.conn.execute.side_effect = OSError("connection refused")

        with pytest.raises(StoreError):
            await store.start()

    @pytest.mark.asyncio
    async def test_stop_closes_pool(self, store, pool):
        await store.stop()

        assert pool.closed

    @pytest.mark.asyncio
    async def test_find_builds_query(self, store, pool):
        pool.conn.fetch.return_value = body_rows({"_id": "1", "slug": "iit-bombay", "nirf": 3})

        documents = await store.find(
            "colleges", {"slug": "iit-bombay"}, projection=["slug"], sort=[("nirf", 1)], skip=10, limit=5
        )

        assert documents == [{"_id": "1", "slug": "iit-bombay"}]
        sql, *params = pool.conn.fetch.await_args.args
        assert sql.startswith("SELECT body FROM documents WHERE collection = $1 AND body @> $2::jsonb")
        assert "ORDER BY body #> $3::text[] ASC NULLS FIRST, id ASC" in sql
        assert sql.endswith("OFFSET $4::int8 LIMIT $5::int8")
        assert params[0] == "colleges"
        assert params[-2:] == [10, 5]

    @pytest.mark.asyncio
    async def test_count_documents(self, store, pool):
        pool.conn.fetch.return_value = [{"count": 7}]

        assert await store.count_documents("colleges") == 7

    @pytest.mark.asyncio
    async def test_aggregate_group(self, store, pool):
        pool.conn.fetch.return_value = [
            {"key": json.dumps("Medical"), "count": 1},
            {"key": json.dumps("Engineering"), "count": 4},
            {"key": None, "count": 1},
        ]

        groups = await store.aggregate_group("colleges", {}, "instituteType")

        assert groups[0] == {"key": "Engineering", "count": 4}
        assert {"key": None, "count": 1} in groups

    @pytest.mark.asyncio
    async def test_insert_returns_stored_body(self, store, pool):
        pool.conn.fetch.return_value = body_rows({"_id": "abc", "slug": "a"})

        inserted = await store.insert("news", {"_id": "abc", "slug": "a"})

        assert inserted == {"_id": "abc", "slug": "a"}
        _, collection, document_id, body = pool.conn.fetch.await_args.args
        assert (collection, document_id) == ("news", "abc")
        assert json.loads(body)["slug"] == "a"

    @pytest.mark.asyncio
    async def test_insert_many_runs_in_one_transaction(self, store, pool):
        pool.conn.fetch.side_effect = [body_rows({"_id": "a"}), body_rows({"_id": "b"})]

        inserted = await store.insert_many("cutoffs", [{"_id": "a"}, {"_id": "b"}])

        assert inserted == [{"_id": "a"}, {"_id": "b"}]
        assert pool.transactions == ["commit"]
        assert pool.conn.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_insert_many_failure_rolls_back(self, store, pool):
        pool.conn.fetch.side_effect = [
            body_rows({"_id": "a"}),
            asyncpg.UniqueViolationError("duplicate key value"),
        ]

        with pytest.raises(StoreError) as exc_info:
            await store.insert_many("cutoffs", [{"_id": "a"}, {"_id": "a"}])

        assert exc_info.value.details["operation"] == "insert_many"
        assert pool.transactions == ["rollback"]

    @pytest.mark.asyncio
    async def test_update_one_not_found(self, store, pool):
        pool.conn.fetch.return_value = []

        assert await store.update_one("colleges", {"slug": "x"}, {"fees": 1}) is None
        sql = pool.conn.fetch.await_args.args[0]
        assert "body = body ||" in sql
        assert "LIMIT 1" in sql

    @pytest.mark.asyncio
    async def test_delete_one(self, store, pool):
        pool.conn.fetch.return_value = body_rows({"_id": "1", "slug": "a"})

        assert await store.delete_one("news", {"slug": "a"}) == {"_id": "1", "slug": "a"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [OSError("reset"), asyncpg.InterfaceError("pool is closed")])
    async def test_driver_errors_become_store_errors(self, store, pool, error):
        pool.conn.fetch.side_effect = error

        with pytest.raises(StoreError) as exc_info:
            await store.find("colleges")

        assert exc_info.value.details["operation"] == "find"

    @pytest.mark.asyncio
    async def test_health_check(self, store, pool):
        assert await store.health_check() is True

        pool.conn.fetch.side_effect = OSError("down")
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_not_started(self):
        store = PostgresStore("postgres://localhost/catalog")

        with pytest.raises(StoreError):
            await store.find("colleges")

    def test_create_store_postgres_backend(self):
        config = get_config("catalog", 8020, store_backend="postgres")

        assert isinstance(create_store(config), PostgresStore)
