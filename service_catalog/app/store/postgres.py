"""
PostgreSQL Store backend.

All collections share one ``documents`` table holding JSONB bodies. Filters are
translated into parameterized SQL; driver errors surface as StoreError.
"""

import asyncio
import json
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

import asyncpg

from shared.errors import StoreError
from shared.logging import get_logger
from .base import (
    Document, Filter, Sort, Store, apply_projection, new_id, sort_groups, validate_filter,
)

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)
INSERT_SQL = "INSERT INTO documents (collection, id, body) VALUES ($1, $2, $3::jsonb) RETURNING body"


def _insert_params(collection: str, document: Document) -> List[Any]:
    body = dict(document)
    body["_id"] = str(body.get("_id") or new_id())
    return [collection, body["_id"], json.dumps(body, default=str)]


def _path(field: str) -> List[str]:
    return field.split(".")


def _nest(field: str, value: Any) -> Dict[str, Any]:
    """``"a.b", 1`` -> ``{"a": {"b": 1}}`` for JSONB containment."""
    nested: Any = value
    for part in reversed(_path(field)):
        nested = {part: nested}
    return nested


class SqlFilter:
    """Translates the filter language into a WHERE clause with positional parameters."""

    def __init__(self, params: Optional[List[Any]] = None):
        self.params: List[Any] = list(params or [])

    def param(self, value: Any, cast: str) -> str:
        self.params.append(value)
        return f"${len(self.params)}::{cast}"

    def where(self, query: Optional[Filter]) -> str:
        clauses = []
        for field, condition in validate_filter(query).items():
            if field == "$or":
                branches = [self.where(branch) for branch in condition]
                clauses.append("(" + " OR ".join(branches) + ")" if branches else "FALSE")
            else:
                clauses.extend(self._condition(field, condition))
        return " AND ".join(clauses) if clauses else "TRUE"

    def _condition(self, field: str, condition: Any) -> List[str]:
        is_operator = isinstance(condition, dict) and condition and all(
            str(key).startswith("$") for key in condition
        )
        if not is_operator:
            return [f"body @> {self.param(json.dumps(_nest(field, condition), default=str), 'jsonb')}"]

        clauses = []
        for op, operand in condition.items():
            path = self.param(_path(field), "text[]")
            if op == "$in":
                values = self.param(json.dumps(list(operand), default=str), "jsonb")
                clauses.append(f"COALESCE({values} @> (body #> {path}), FALSE)")
            elif op in ("$gte", "$lte"):
                comparator = ">=" if op == "$gte" else "<="
                bound = self.param(float(operand), "float8")
                clauses.append(
                    f"CASE WHEN jsonb_typeof(body #> {path}) = 'number' "
                    f"THEN (body #>> {path})::float8 {comparator} {bound} ELSE FALSE END"
                )
            elif op == "$regex":
                pattern = self.param(str(operand), "text")
                clauses.append(
                    f"CASE WHEN jsonb_typeof(body #> {path}) = 'string' "
                    f"THEN (body #>> {path}) ~* {pattern} ELSE FALSE END"
                )
        return clauses

    def order_by(self, sort: Optional[Sort]) -> str:
        terms = []
        for field, direction in sort or []:
            if field == "_id":
                terms.append("id ASC" if direction >= 0 else "id DESC")
            else:
                path = self.param(_path(field), "text[]")
                terms.append(f"body #> {path} " + ("ASC NULLS FIRST" if direction >= 0 else "DESC NULLS LAST"))
        terms.append("id ASC")
        return ", ".join(terms)


class PostgresStore(Store):
    """asyncpg-backed JSONB document store."""

    def __init__(self, dsn: str, command_timeout: float = 30, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.logger = get_logger("catalog.store.postgres")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Open the pool and create the documents table."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=2,
                    max_size=10,
                    command_timeout=self.command_timeout
                )

            await self._create_tables()

            self.logger.info("PostgreSQL store started")

        except DRIVER_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL store", error=str(e))
            raise StoreError("Failed to start PostgreSQL store", details={"cause": str(e)})

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection VARCHAR(64) NOT NULL,
                    id VARCHAR(64) NOT NULL,
                    body JSONB NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (collection, id)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_body ON documents USING GIN (body jsonb_path_ops);
            """)

    @contextmanager
    def _driver_errors(self, operation: str):
        if self.pool is None:
            raise StoreError("PostgreSQL store not started", details={"operation": operation})
        try:
            yield
        except asyncpg.UniqueViolationError as e:
            raise StoreError("Duplicate document id", details={"operation": operation, "cause": str(e)})
        except DRIVER_ERRORS as e:
            self.logger.error("Store operation failed", operation=operation, error=str(e))
            raise StoreError(f"Store {operation} failed", details={"operation": operation, "cause": str(e)})

    async def _fetch(self, operation: str, sql: str, params: List[Any]) -> List[asyncpg.Record]:
        with self._driver_errors(operation):
            async with self.pool.acquire() as conn:
                return await conn.fetch(sql, *params)

    async def health_check(self) -> bool:
        try:
            await self._fetch("health_check", "SELECT 1", [])
            return True
        except StoreError:
            return False

    async def find(self, collection: str, query: Optional[Filter] = None,
                   projection: Optional[Iterable[str]] = None, sort: Optional[Sort] = None,
                   skip: int = 0, limit: Optional[int] = None) -> List[Document]:
        sql_filter = SqlFilter([collection])
        where = sql_filter.where(query)
        order = sql_filter.order_by(sort)
        sql = f"SELECT body FROM documents WHERE collection = $1 AND {where} ORDER BY {order}"
        if skip:
            sql += f" OFFSET {sql_filter.param(int(skip), 'int8')}"
        if limit is not None:
            sql += f" LIMIT {sql_filter.param(int(limit), 'int8')}"

        rows = await self._fetch("find", sql, sql_filter.params)
        return [apply_projection(json.loads(row["body"]), projection) for row in rows]

    async def count_documents(self, collection: str, query: Optional[Filter] = None) -> int:
        sql_filter = SqlFilter([collection])
        where = sql_filter.where(query)
        rows = await self._fetch(
            "count_documents",
            f"SELECT count(*) AS count FROM documents WHERE collection = $1 AND {where}",
            sql_filter.params
        )
        return rows[0]["count"] if rows else 0

    async def aggregate_group(self, collection: str, query: Optional[Filter], group_key: str) -> List[Dict[str, Any]]:
        sql_filter = SqlFilter([collection])
        path = sql_filter.param(_path(group_key), "text[]")
        where = sql_filter.where(query)
        rows = await self._fetch(
            "aggregate_group",
            f"SELECT body #> {path} AS key, count(*) AS count FROM documents "
            f"WHERE collection = $1 AND {where} GROUP BY 1",
            sql_filter.params
        )
        return sort_groups([
            {"key": json.loads(row["key"]) if row["key"] is not None else None, "count": row["count"]}
            for row in rows
        ])

    async def insert(self, collection: str, document: Document) -> Document:
        rows = await self._fetch("insert", INSERT_SQL, _insert_params(collection, document))
        return json.loads(rows[0]["body"])

    async def insert_many(self, collection: str, documents: Iterable[Document]) -> List[Document]:
        """Insert every document in one transaction; any failure inserts none."""
        params = [_insert_params(collection, document) for document in documents]
        inserted = []
        with self._driver_errors("insert_many"):
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for values in params:
                        rows = await conn.fetch(INSERT_SQL, *values)
                        inserted.append(json.loads(rows[0]["body"]))
        return inserted

    async def update_one(self, collection: str, query: Filter, changes: Dict[str, Any]) -> Optional[Document]:
        sql_filter = SqlFilter([collection])
        where = sql_filter.where(query)
        patch = sql_filter.param(
            json.dumps({key: value for key, value in changes.items() if key != "_id"}, default=str),
            "jsonb"
        )
        rows = await self._fetch(
            "update_one",
            f"UPDATE documents SET body = body || {patch}, updated_at = NOW() "
            f"WHERE collection = $1 AND id = ("
            f"SELECT id FROM documents WHERE collection = $1 AND {where} ORDER BY id LIMIT 1"
            f") RETURNING body",
            sql_filter.params
        )
        return json.loads(rows[0]["body"]) if rows else None

    async def delete_one(self, collection: str, query: Filter) -> Optional[Document]:
        sql_filter = SqlFilter([collection])
        where = sql_filter.where(query)
        rows = await self._fetch(
            "delete_one",
            f"DELETE FROM documents WHERE collection = $1 AND id = ("
            f"SELECT id FROM documents WHERE collection = $1 AND {where} ORDER BY id LIMIT 1"
            f") RETURNING body",
            sql_filter.params
        )
        return json.loads(rows[0]["body"]) if rows else None
