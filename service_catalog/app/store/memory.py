"""
In-memory Store backend for tests and ``store_backend=memory``.
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from shared.errors import StoreError
from .base import (
    Document, Filter, Sort, Store, apply_projection, get_field, matches_filter,
    new_id, sort_documents, sort_groups, validate_filter,
)


class MemoryStore(Store):
    """Dict-of-lists document store. Returned documents are copies."""

    def __init__(self, seed: Optional[Dict[str, List[Document]]] = None):
        self._collections: Dict[str, List[Document]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self.calls: Dict[str, int] = defaultdict(int)
        for collection, documents in (seed or {}).items():
            for document in documents:
                self._insert_sync(collection, document)

    def _prepare(self, collection: str, documents: Iterable[Document]) -> List[Document]:
        """Copies with ids assigned; a duplicate id anywhere rejects the whole batch."""
        seen = {existing["_id"] for existing in self._collections[collection]}
        prepared = []
        for document in documents:
            stored = copy.deepcopy(document)
            stored["_id"] = str(stored.get("_id") or new_id())
            if stored["_id"] in seen:
                raise StoreError("Duplicate document id", details={"collection": collection, "_id": stored["_id"]})
            seen.add(stored["_id"])
            prepared.append(stored)
        return prepared

    def _insert_sync(self, collection: str, document: Document) -> Document:
        return self._insert_all_sync(collection, [document])[0]

    def _insert_all_sync(self, collection: str, documents: Iterable[Document]) -> List[Document]:
        prepared = self._prepare(collection, documents)
        self._collections[collection].extend(prepared)
        return [copy.deepcopy(stored) for stored in prepared]

    def _matching(self, collection: str, query: Optional[Filter]) -> List[Document]:
        query = validate_filter(query)
        return [doc for doc in self._collections.get(collection, []) if matches_filter(doc, query)]

    async def find(self, collection: str, query: Optional[Filter] = None,
                   projection: Optional[Iterable[str]] = None, sort: Optional[Sort] = None,
                   skip: int = 0, limit: Optional[int] = None) -> List[Document]:
        self.calls["find"] += 1
        documents = sort_documents(self._matching(collection, query), sort)
        end = None if limit is None else skip + limit
        return [apply_projection(copy.deepcopy(doc), projection) for doc in documents[skip:end]]

    async def count_documents(self, collection: str, query: Optional[Filter] = None) -> int:
        self.calls["count_documents"] += 1
        return len(self._matching(collection, query))

    async def aggregate_group(self, collection: str, query: Optional[Filter], group_key: str) -> List[Dict[str, Any]]:
        self.calls["aggregate_group"] += 1
        counts: Dict[Any, int] = defaultdict(int)
        for document in self._matching(collection, query):
            counts[get_field(document, group_key)] += 1
        return sort_groups([{"key": key, "count": count} for key, count in counts.items()])

    async def insert(self, collection: str, document: Document) -> Document:
        self.calls["insert"] += 1
        async with self._lock:
            return self._insert_sync(collection, document)

    async def insert_many(self, collection: str, documents: Iterable[Document]) -> List[Document]:
        self.calls["insert_many"] += 1
        async with self._lock:
            return self._insert_all_sync(collection, documents)

    async def update_one(self, collection: str, query: Filter, changes: Dict[str, Any]) -> Optional[Document]:
        self.calls["update_one"] += 1
        async with self._lock:
            for document in self._matching(collection, query):
                document.update({key: copy.deepcopy(value) for key, value in changes.items() if key != "_id"})
                return copy.deepcopy(document)
        return None

    async def delete_one(self, collection: str, query: Filter) -> Optional[Document]:
        self.calls["delete_one"] += 1
        async with self._lock:
            for document in self._matching(collection, query):
                self._collections[collection].remove(document)
                return document
        return None
