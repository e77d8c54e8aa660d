"""Tests for search, filter, sort and pagination over snapshots."""

from __future__ import annotations

import pytest

from marketplace.services import query_engine
from marketplace.services.query_engine import ListQuery, QueryPage
from tests.conftest import make_document


def _docs() -> list[dict]:
    return [
        make_document("Alpha launch email", "2024-03-01T00:00:00Z", category="Marketing",
                      tags=["email"], isFeatured=True, createdBy="u1"),
        make_document("Bug triage", "2024-02-01T00:00:00Z", category="Development",
                      tags=["beta", "code"], createdBy="u2"),
        make_document("Alpha beta combo", "2024-01-01T00:00:00Z", category="Development",
                      tags=["code"], createdBy="u1"),
    ]


class TestSearch:
    def test_tokens_must_all_match(self):
        docs = [
            make_document("alpha only", "2024-01-02T00:00:00Z", tags=[]),
            make_document("nothing here", "2024-01-01T00:00:00Z", tags=["beta"]),
        ]
        assert query_engine.search_documents(docs, "alpha beta") == []

    def test_tokens_may_match_different_fields(self):
        docs = [make_document("alpha tool", "2024-01-01T00:00:00Z", tags=["beta"])]
        assert query_engine.search_documents(docs, "alpha beta") == docs

    def test_search_is_case_insensitive(self):
        docs = _docs()
        result = query_engine.search_documents(docs, "ALPHA")
        assert [d["title"] for d in result] == ["Alpha launch email", "Alpha beta combo"]

    def test_searches_keywords_category_and_content(self):
        doc = make_document("Plain", "2024-01-01T00:00:00Z", category="Finance",
                            keywords=["budget"], additionalHTML="<b>spreadsheet</b>")
        fields = query_engine.DEFAULT_SEARCH_FIELDS + ("additionalHTML",)
        assert query_engine.search_documents([doc], "finance budget spreadsheet", fields) == [doc]
        assert query_engine.search_documents([doc], "spreadsheet") == []

    @pytest.mark.parametrize("term", [None, "", "   "])
    def test_empty_search_keeps_everything(self, term):
        docs = _docs()
        assert query_engine.search_documents(docs, term) == docs


class TestFilter:
    def test_category_all_is_skipped(self):
        docs = _docs()
        assert query_engine.filter_documents(docs, ListQuery(category="All")) == docs

    def test_tags_match_any(self):
        result = query_engine.filter_documents(_docs(), ListQuery(tags=("email", "beta")))
        assert [d["title"] for d in result] == ["Alpha launch email", "Bug triage"]

    def test_featured_false_excludes_featured(self):
        result = query_engine.filter_documents(_docs(), ListQuery(featured=False))
        assert all(not d["isFeatured"] for d in result)
        assert len(result) == 2

    def test_featured_flag_matches_featured_list_predicate(self):
        docs = [
            {"id": "a", "isFeatured": True},
            {"id": "b", "isFeatured": "true"},
            {"id": "c", "isFeatured": "false"},
            {"id": "d", "isFeatured": 1},
            {"id": "e"},
        ]
        featured = query_engine.filter_documents(docs, ListQuery(featured=True))
        assert [d["id"] for d in featured] == ["a", "b", "d"]
        assert [d["id"] for d in docs if query_engine.is_featured(d)] == ["a", "b", "d"]
        plain = query_engine.filter_documents(docs, ListQuery(featured=False))
        assert [d["id"] for d in plain] == ["c", "e"]

    def test_created_by(self):
        result = query_engine.filter_documents(_docs(), ListQuery(created_by="u1"))
        assert {d["title"] for d in result} == {"Alpha launch email", "Alpha beta combo"}

    def test_filters_commute(self):
        docs = _docs()
        by_category = query_engine.filter_documents(docs, ListQuery(category="Development"))
        then_tags = query_engine.filter_documents(by_category, ListQuery(tags=("code",)))

        by_tags = query_engine.filter_documents(docs, ListQuery(tags=("code",)))
        then_category = query_engine.filter_documents(by_tags, ListQuery(category="Development"))

        combined = query_engine.filter_documents(
            docs, ListQuery(category="Development", tags=("code",))
        )
        assert then_tags == then_category == combined


class TestSort:
    def test_newest_first(self):
        docs = list(reversed(_docs()))
        result = query_engine.sort_documents(docs)
        assert [d["createdAt"][:7] for d in result] == ["2024-03", "2024-02", "2024-01"]

    def test_mixed_timestamp_formats(self):
        docs = [
            {"id": "a", "createdAt": {"_seconds": 1_600_000_000}},
            {"id": "b", "createdAt": 1_700_000_000_000},
            {"id": "c", "createdAt": "2010-01-01T00:00:00Z"},
        ]
        assert [d["id"] for d in query_engine.sort_documents(docs)] == ["b", "a", "c"]

    def test_unparseable_timestamps_do_not_raise(self):
        docs = [{"id": "a", "createdAt": "yesterday"}, {"id": "b"}, {"id": "c", "createdAt": True}]
        assert len(query_engine.sort_documents(docs)) == 3

    def test_undated_documents_sort_after_dated_ones(self):
        docs = [
            {"id": "old", "createdAt": "2024-01-01T00:00:00Z"},
            {"id": "none"},
            {"id": "new", "createdAt": "2024-01-03T00:00:00Z"},
            {"id": "bad", "createdAt": "yesterday"},
            {"id": "mid", "createdAt": "2024-01-02T00:00:00Z"},
        ]
        result = [d["id"] for d in query_engine.sort_documents(docs)]
        assert result == ["new", "mid", "old", "none", "bad"]


class TestPagination:
    @pytest.mark.parametrize("limit,offset", [(1, 0), (2, 1), (5, 0), (3, 3), (2, 10)])
    def test_page_never_exceeds_limit(self, limit, offset):
        page = query_engine.execute(_docs(), ListQuery(limit=limit, offset=offset))
        assert len(page.items) <= limit
        assert page.total_count == 3

    def test_offset_past_end_is_empty(self):
        page = query_engine.execute(_docs(), ListQuery(limit=2, offset=3))
        assert page.items == []
        assert page.has_more is False

    def test_metadata(self):
        page = QueryPage(items=[], total_count=45, limit=20, offset=20)
        assert page.has_more is True
        assert page.current_page == 2
        assert page.total_pages == 3
        assert page.to_dict()["totalPages"] == 3

    def test_category_page_with_more(self):
        docs = [
            make_document(f"Prompt {i}", f"2024-01-0{i + 1}T00:00:00Z", category="AI Prompts")
            for i in range(5)
        ] + [
            make_document(f"Other {i}", f"2024-02-0{i + 1}T00:00:00Z", category="Other")
            for i in range(3)
        ]
        query = ListQuery.from_params(category="AI Prompts", limit="2", offset="0")
        page = query_engine.execute(docs, query)
        assert len(page.items) == 2
        assert page.total_count == 5
        assert page.has_more is True
        assert [d["title"] for d in page.items] == ["Prompt 4", "Prompt 3"]


class TestExecuteCoercion:
    def _five(self) -> list[dict]:
        return [
            {"id": f"d{i}", "createdAt": f"2024-01-0{i}T00:00:00Z"} for i in range(5, 0, -1)
        ]

    def test_zero_limit_uses_default(self):
        page = query_engine.execute(self._five(), ListQuery(limit=0))
        assert page.limit == query_engine.DEFAULT_LIMIT
        assert len(page.items) == 5
        assert page.total_pages == 1

    def test_negative_limit_uses_default(self):
        assert ListQuery(limit=-3).limit == query_engine.DEFAULT_LIMIT

    def test_negative_offset_starts_at_zero(self):
        page = query_engine.execute(self._five(), ListQuery(limit=2, offset=-1))
        assert [d["id"] for d in page.items] == ["d5", "d4"]
        assert page.offset == 0
        assert page.current_page == 1

    def test_paginate_clamps_directly(self):
        page = query_engine.paginate(self._five(), 0, -4)
        assert (page.limit, page.offset) == (query_engine.DEFAULT_LIMIT, 0)
        assert page.has_more is False


class TestListQueryFromParams:
    def test_defaults(self):
        query = ListQuery.from_params()
        assert query == ListQuery()
        assert query.limit == 20
        assert query.offset == 0

    @pytest.mark.parametrize("raw", ["0", "-5", "abc", ""])
    def test_bad_limit_falls_back(self, raw):
        assert ListQuery.from_params(limit=raw).limit == 20

    @pytest.mark.parametrize("raw,expected", [("-3", 0), ("nope", 0), ("7", 7)])
    def test_offset_coercion(self, raw, expected):
        assert ListQuery.from_params(offset=raw).offset == expected

    def test_normalizes_search_and_tags(self):
        query = ListQuery.from_params(search="  Email   WRITER ", tags="seo, email,seo,")
        assert query.search == "email writer"
        assert query.tags == ("email", "seo")

    @pytest.mark.parametrize("raw,expected", [("true", True), ("FALSE", False), ("maybe", None)])
    def test_featured_flag(self, raw, expected):
        assert ListQuery.from_params(featured=raw).featured is expected

    def test_blank_category_means_all(self):
        assert ListQuery.from_params(category="  ").category == "All"
