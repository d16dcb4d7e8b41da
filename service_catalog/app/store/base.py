"""
Store interface and the filter language shared by every backend.

Documents are plain dicts carrying a string ``_id``. Filters support equality,
``$in``, ``$gte``, ``$lte``, case-insensitive ``$regex`` and a top-level
``$or``; field names may be dotted to reach nested values.
"""

import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from shared.errors import ValidationError

Document = Dict[str, Any]
Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

COLLECTIONS = ("colleges", "placements", "placement_stats", "top_recruiters", "cutoffs", "news")
OPERATORS = ("$in", "$gte", "$lte", "$regex")

_MISSING = object()


def new_id() -> str:
    return uuid.uuid4().hex


def get_field(document: Document, path: str, default: Any = None) -> Any:
    """Value at a dotted ``path``, or ``default`` when any segment is missing."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_filter(query: Optional[Filter]) -> Filter:
    """Reject operators outside the supported language."""
    query = query or {}
    for field, condition in query.items():
        if field == "$or":
            if not isinstance(condition, list):
                raise ValidationError("$or expects a list of filters", details={"filter": query})
            for branch in condition:
                validate_filter(branch)
            continue
        if field.startswith("$"):
            raise ValidationError(f"Unsupported top-level operator: {field}")
        if _is_operator_dict(condition):
            for op in condition:
                if op not in OPERATORS:
                    raise ValidationError(f"Unsupported operator: {op}", details={"field": field})
            if "$in" in condition and not isinstance(condition["$in"], (list, tuple)):
                raise ValidationError("$in expects a list", details={"field": field})
    return query


def _is_operator_dict(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(
        isinstance(key, str) and key.startswith("$") for key in condition
    )


def _matches_condition(value: Any, condition: Any) -> bool:
    if not _is_operator_dict(condition):
        return value is not _MISSING and value == condition

    for op, operand in condition.items():
        if op == "$in":
            if value is _MISSING or value not in list(operand):
                return False
        elif op == "$gte":
            if not is_number(value) or value < operand:
                return False
        elif op == "$lte":
            if not is_number(value) or value > operand:
                return False
        elif op == "$regex":
            if not isinstance(value, str) or re.search(operand, value, re.IGNORECASE) is None:
                return False
    return True


def matches_filter(document: Document, query: Optional[Filter]) -> bool:
    """True when ``document`` satisfies every clause of ``query``."""
    for field, condition in (query or {}).items():
        if field == "$or":
            if not any(matches_filter(document, branch) for branch in condition):
                return False
            continue
        if not _matches_condition(get_field(document, field, _MISSING), condition):
            return False
    return True


def apply_projection(document: Document, projection: Optional[Iterable[str]]) -> Document:
    """Keep only the projected top-level fields (``_id`` is always kept)."""
    if not projection:
        return document
    fields = set(projection) | {"_id"}
    return {key: value for key, value in document.items() if key in fields}


def sort_documents(documents: List[Document], sort: Optional[Sort]) -> List[Document]:
    """Stable multi-key sort; missing values sort first in ascending order."""
    ordered = list(documents)
    for field, direction in reversed(list(sort or [])):
        ordered.sort(
            key=lambda doc: _sort_key(get_field(doc, field)),
            reverse=direction < 0
        )
    return ordered


def _sort_key(value: Any) -> Tuple[int, Any]:
    if value is None:
        return (0, 0)
    if is_number(value):
        return (1, value)
    return (2, str(value))


class Store:
    """Async, collection-scoped document store.

    Backends implement the primitive operations; ``find_one`` and
    ``range_fetch`` are expressed in terms of ``find``.
    """

    async def start(self):
        pass

    async def stop(self):
        pass

    async def health_check(self) -> bool:
        return True

    async def find(self, collection: str, query: Optional[Filter] = None,
                   projection: Optional[Iterable[str]] = None, sort: Optional[Sort] = None,
                   skip: int = 0, limit: Optional[int] = None) -> List[Document]:
        raise NotImplementedError

    async def find_one(self, collection: str, query: Optional[Filter] = None,
                       projection: Optional[Iterable[str]] = None) -> Optional[Document]:
        documents = await self.find(collection, query, projection=projection, limit=1)
        return documents[0] if documents else None

    async def count_documents(self, collection: str, query: Optional[Filter] = None) -> int:
        raise NotImplementedError

    async def aggregate_group(self, collection: str, query: Optional[Filter], group_key: str) -> List[Dict[str, Any]]:
        """``[{key, count}]`` per distinct value of ``group_key``, largest groups first."""
        raise NotImplementedError

    async def range_fetch(self, collection: str, query: Optional[Filter], offset: int, limit: int,
                          sort: Optional[Sort] = None) -> List[Document]:
        """One page of a stable ordering; a page shorter than ``limit`` means end of data."""
        return await self.find(collection, query, sort=sort or [("_id", 1)], skip=offset, limit=limit)

    async def insert(self, collection: str, document: Document) -> Document:
        raise NotImplementedError

    async def insert_many(self, collection: str, documents: Iterable[Document]) -> List[Document]:
        """Insert a batch. The bundled backends insert all documents or none."""
        return [await self.insert(collection, document) for document in documents]

    async def update_one(self, collection: str, query: Filter, changes: Dict[str, Any]) -> Optional[Document]:
        """Merge ``changes`` into the first match; returns the updated document or None."""
        raise NotImplementedError

    async def delete_one(self, collection: str, query: Filter) -> Optional[Document]:
        """Remove the first match; returns the removed document or None."""
        raise NotImplementedError


def sort_groups(groups: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(groups, key=lambda group: (-group["count"], _sort_key(group["key"])))
