"""Search, filter, sort and paginate over an in-memory snapshot.

Everything here is pure: the same snapshot and query always produce the
same page, and nothing touches a store.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence

from marketplace.utils.validators import parse_bool_flag, parse_int, parse_string_list

ALL_CATEGORIES = "All"
DEFAULT_LIMIT = 20

DEFAULT_SEARCH_FIELDS = ("title", "description", "category", "keywords", "tags")


@dataclass(frozen=True)
class ListQuery:
    """Normalized listing query. Build with ``from_params`` for raw input."""

    search: str | None = None
    category: str = ALL_CATEGORIES
    tags: tuple[str, ...] = ()
    featured: bool | None = None
    created_by: str | None = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit <= 0:
            object.__setattr__(self, "limit", DEFAULT_LIMIT)
        if self.offset < 0:
            object.__setattr__(self, "offset", 0)

    @classmethod
    def from_params(
        cls,
        search: str | None = None,
        category: str | None = None,
        tags: str | Iterable[str] | None = None,
        featured: str | bool | None = None,
        created_by: str | None = None,
        limit: str | int | None = None,
        offset: str | int | None = None,
        default_limit: int = DEFAULT_LIMIT,
    ) -> "ListQuery":
        """Coerce raw request values; malformed input falls back to defaults."""
        terms = " ".join((search or "").lower().split())
        tag_set = tuple(sorted(set(parse_string_list(tags))))

        page_size = parse_int(limit, default_limit)
        if page_size <= 0:
            page_size = default_limit
        start = parse_int(offset, 0)
        if start < 0:
            start = 0

        return cls(
            search=terms or None,
            category=(category or "").strip() or ALL_CATEGORIES,
            tags=tag_set,
            featured=featured if isinstance(featured, bool) else parse_bool_flag(featured),
            created_by=(created_by or "").strip() or None,
            limit=page_size,
            offset=start,
        )

    def filters(self) -> dict:
        return {
            "category": self.category,
            "tags": list(self.tags),
            "featured": self.featured,
            "createdBy": self.created_by,
        }


@dataclass
class QueryPage:
    items: list[dict]
    total_count: int
    limit: int
    offset: int
    has_more: bool = field(init=False)
    current_page: int = field(init=False)
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.has_more = self.offset + self.limit < self.total_count
        self.current_page = self.offset // self.limit + 1
        self.total_pages = math.ceil(self.total_count / self.limit)

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "totalCount": self.total_count,
            "hasMore": self.has_more,
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "limit": self.limit,
            "offset": self.offset,
        }


def _field_values(doc: dict, name: str) -> list[str]:
    value = doc.get(name)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


def search_documents(
    documents: Sequence[dict],
    search: str | None,
    fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
) -> list[dict]:
    """Keep documents where every token appears in at least one field."""
    tokens = (search or "").lower().split()
    if not tokens:
        return list(documents)

    matched = []
    for doc in documents:
        haystacks = [v.lower() for name in fields for v in _field_values(doc, name)]
        if all(any(token in h for h in haystacks) for token in tokens):
            matched.append(doc)
    return matched


def is_featured(doc: dict) -> bool:
    flag = doc.get("isFeatured")
    if isinstance(flag, str):
        return parse_bool_flag(flag) is True
    return bool(flag)


def filter_documents(documents: Sequence[dict], query: ListQuery) -> list[dict]:
    results = list(documents)

    if query.category and query.category != ALL_CATEGORIES:
        results = [d for d in results if d.get("category") == query.category]

    if query.tags:
        wanted = set(query.tags)
        results = [d for d in results if wanted.intersection(_field_values(d, "tags"))]

    if query.featured is not None:
        results = [d for d in results if is_featured(d) is query.featured]

    if query.created_by:
        results = [d for d in results if d.get("createdBy") == query.created_by]

    return results


def parse_timestamp(value: object) -> float | None:
    """Epoch seconds for ISO strings, numbers and ``{"_seconds": n}`` maps."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Millisecond epochs are common in exported documents
        return value / 1000 if value > 1e11 else float(value)
    if isinstance(value, dict):
        seconds = value.get("_seconds", value.get("seconds"))
        return float(seconds) if isinstance(seconds, (int, float)) else None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


def _newest_first(doc: dict) -> tuple[bool, float]:
    # Undated documents go last and keep their relative order
    ts = parse_timestamp(doc.get("createdAt"))
    return ts is None, -(ts or 0.0)


def sort_documents(documents: Sequence[dict]) -> list[dict]:
    return sorted(documents, key=_newest_first)


def paginate(documents: Sequence[dict], limit: int, offset: int) -> QueryPage:
    if limit <= 0:
        limit = DEFAULT_LIMIT
    offset = max(offset, 0)
    return QueryPage(
        items=list(documents[offset:offset + limit]),
        total_count=len(documents),
        limit=limit,
        offset=offset,
    )


def execute(
    documents: Sequence[dict],
    query: ListQuery,
    search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
) -> QueryPage:
    matched = search_documents(documents, query.search, search_fields)
    matched = filter_documents(matched, query)
    return paginate(sort_documents(matched), query.limit, query.offset)
