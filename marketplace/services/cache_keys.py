"""Cache key naming for one catalog resource."""

from __future__ import annotations

from urllib.parse import quote

SEPARATOR = ":"


def _part(value: object) -> str:
    # Percent-encode so user input can never contain the separator
    return quote(str(value), safe="")


class CacheKeys:
    """Every key a resource writes to the key-value store."""

    def __init__(self, resource: str) -> None:
        self.resource = resource

    @property
    def results_prefix(self) -> str:
        return f"{self.resource}{SEPARATOR}results"

    @property
    def results_pattern(self) -> str:
        return f"{self.results_prefix}{SEPARATOR}*"

    @property
    def all_pattern(self) -> str:
        return f"{self.resource}{SEPARATOR}*"

    @property
    def total_count(self) -> str:
        return f"{self.resource}{SEPARATOR}total{SEPARATOR}count"

    @property
    def category_counts(self) -> str:
        return f"{self.resource}{SEPARATOR}categories{SEPARATOR}counts"

    def document(self, doc_id: str) -> str:
        return f"{self.resource}{SEPARATOR}doc{SEPARATOR}{_part(doc_id)}"

    def category(self, name: str) -> str:
        return f"{self.resource}{SEPARATOR}category{SEPARATOR}{_part(name)}"

    def featured(self, limit: int) -> str:
        # Lives under the results prefix so every mutation purges it too
        return SEPARATOR.join([self.results_prefix, "featured", str(limit)])


def build_results_key(resource: str, query) -> str:
    """Deterministic result-cache key for a normalized ``ListQuery``.

    Only non-default parts are included, always in the same order:
    search, category, tags, featured, creator, then limit and offset.
    Each part carries a label so different combinations cannot collide.
    """
    parts = [CacheKeys(resource).results_prefix]
    if query.search:
        parts.append(f"search={_part(query.search)}")
    if query.category and query.category != "All":
        parts.append(f"cat={_part(query.category)}")
    if query.tags:
        parts.append("tags=" + ",".join(_part(t) for t in query.tags))
    if query.featured is not None:
        parts.append(f"feat={'true' if query.featured else 'false'}")
    if query.created_by:
        parts.append(f"creator={_part(query.created_by)}")
    parts.append(f"limit={query.limit}")
    parts.append(f"offset={query.offset}")
    return SEPARATOR.join(parts)
