"""
Tests for the query engine.

Tests the directive pipeline:
- WHERE parsing and evaluation (comparison, like, in, AND/OR)
- sortBy, offset, pageSize, distinct
- count, select, load
"""

from typing import Any

import pytest

from docstore.errors import NotFoundError, RequestError
from docstore.runtime.query_engine import (
    FilterOperator,
    QueryOptions,
    RelationLoad,
    SortField,
    WhereClause,
    apply_query,
    parse_sort_string,
    parse_where,
    sort_records,
)


def ids(records: Any) -> list[str]:
    return [r["_id"] for r in records]


def run(data: Any, resolver=None, **params: str) -> Any:
    return apply_query(data, QueryOptions.from_params(params), resolver)


# =============================================================================
# WHERE
# =============================================================================


class TestWhereParsing:
    def test_comparison_value_is_a_literal(self):
        clause = WhereClause.parse("rating >= 4")

        assert clause.field == "rating"
        assert clause.operator == FilterOperator.GTE
        assert clause.value == 4

    def test_longest_operator_wins(self):
        assert WhereClause.parse("rating <= 4").operator == FilterOperator.LTE
        assert WhereClause.parse("rating < 4").operator == FilterOperator.LT

    def test_like_needs_string(self):
        clause = WhereClause.parse('title LIKE "dune"')

        assert clause.operator == FilterOperator.LIKE
        assert clause.value == "dune"

    def test_in_unwraps_list(self):
        clause = WhereClause.parse('author in ("Lem", "Gibson")')

        assert clause.operator == FilterOperator.IN
        assert clause.value == ["Lem", "Gibson"]

    @pytest.mark.parametrize(
        "clause",
        ["rating >", "rating", "rating > abc", 'title like 5', "author in Lem"],
    )
    def test_malformed_clause(self, clause: str):
        with pytest.raises(RequestError, match="Could not parse WHERE clause"):
            parse_where(clause)

    def test_connective_detection(self):
        assert parse_where("rating > 3 AND rating < 5").conjunction is True
        assert parse_where("rating > 5 or rating < 3").conjunction is False

    def test_mixed_connectives_are_not_supported(self):
        with pytest.raises(RequestError):
            parse_where('rating > 3 and author = "Lem" or author = "Gibson"')


class TestWhereEvaluation:
    def test_and_bounds_keep_original_order(self, books):
        result = run(books, where="rating > 3 and rating <= 5")

        assert ids(result) == ["b1", "b3", "b4"]

    def test_or(self, books):
        result = run(books, where="rating < 4 OR rating > 5")

        assert ids(result) == ["b2", "b5"]

    def test_equality_with_string(self, books):
        assert ids(run(books, where='author="Austen"')) == ["b2", "b4"]

    def test_equality_is_loose_between_number_and_string(self, books):
        assert ids(run(books, where='rating = "4"')) == ["b3", "b4"]

    def test_like_is_case_insensitive_substring(self, books):
        assert ids(run(books, where='title like "UNE"')) == ["b1"]

    def test_like_on_missing_field_does_not_match(self, books):
        assert run(books, where='isbn like "978"') == []

    def test_in(self, books):
        assert ids(run(books, where='author in ("Lem", "Gibson")')) == ["b3", "b5"]

    def test_in_does_not_mix_bools_and_numbers(self):
        records = [{"_id": "a", "flag": True}, {"_id": "b", "flag": 1}, {"_id": "c", "flag": 1.0}]

        assert ids(run(records, where="flag in (1)")) == ["b", "c"]
        assert ids(run(records, where="flag in (true)")) == ["a"]

    def test_incomparable_values_do_not_match(self, books):
        assert run(books, where='title > 3') == []


# =============================================================================
# Sorting
# =============================================================================


class TestSort:
    def test_parse_sort_string(self):
        assert parse_sort_string("rating desc, author") == [
            SortField("rating", descending=True),
            SortField("author"),
        ]

    @pytest.mark.parametrize(("part", "descending"), [("rating asc", False), ("rating DESC", True)])
    def test_only_desc_sorts_descending(self, part, descending):
        assert parse_sort_string(part) == [SortField("rating", descending=descending)]

    def test_first_field_dominates(self, books):
        result = run(books, sortBy="rating desc,author")

        assert [(r["rating"], r["author"]) for r in result] == [
            (6, "Gibson"),
            (5, "Herbert"),
            (4, "Austen"),
            (4, "Lem"),
            (3, "Austen"),
        ]

    def test_numbers_compare_numerically(self):
        records = [{"n": 10}, {"n": 9}, {"n": 100}]

        assert [r["n"] for r in sort_records(records, [SortField("n")])] == [9, 10, 100]

    def test_strings_compare_lexicographically(self, books):
        result = run(books, sortBy="title")

        assert [r["title"] for r in result] == [
            "Dune",
            "Emma",
            "Neuromancer",
            "Persuasion",
            "Solaris",
        ]

    def test_missing_values_sort_first(self):
        records = [{"_id": "a", "n": "x"}, {"_id": "b"}]

        assert ids(sort_records(records, [SortField("n")])) == ["b", "a"]


# =============================================================================
# Paging and shaping
# =============================================================================


class TestPaging:
    def test_offset_without_page_size_is_unlimited(self, books):
        assert ids(run(books, offset="2")) == ["b3", "b4", "b5"]

    def test_page_size(self, books):
        assert ids(run(books, offset="1", pageSize="2")) == ["b2", "b3"]

    def test_unparsable_page_size_defaults_to_ten(self):
        records = [{"_id": str(i)} for i in range(15)]

        assert len(run(records, pageSize="abc")) == 10

    def test_no_page_size_returns_everything(self):
        records = [{"_id": str(i)} for i in range(15)]

        assert len(run(records)) == 15


class TestDistinct:
    def test_first_record_per_author(self, books):
        result = run(books, distinct="author")

        assert ids(result) == ["b1", "b2", "b3", "b5"]

    def test_composite_key(self, books):
        result = run(books, distinct="author,rating")

        assert len(result) == 5


class TestCount:
    def test_counts_filtered_list(self, books):
        assert run(books, where="rating > 3 and rating <= 5", count="true") == 3

    def test_counts_after_pagination(self, books):
        assert run(books, pageSize="2", count="1") == 2

    def test_single_record_counts_as_one(self, books):
        assert run(books[0], count="true") == 1


class TestSelect:
    def test_projects_each_record(self, books):
        result = run(books, select="title,rating", pageSize="2")

        assert result == [{"title": "Dune", "rating": 5}, {"title": "Emma", "rating": 3}]

    def test_projects_single_record(self, books):
        assert run(books[2], select="_id,author") == {"_id": "b3", "author": "Lem"}

    def test_select_runs_after_distinct(self, books):
        result = run(books, distinct="author", select="author")

        assert result == [
            {"author": "Herbert"},
            {"author": "Austen"},
            {"author": "Lem"},
            {"author": "Gibson"},
        ]


# =============================================================================
# Relation loading
# =============================================================================


@pytest.fixture
def users() -> dict[str, dict[str, Any]]:
    return {
        "user-ivan": {"_id": "user-ivan", "username": "Ivan", "hashedPassword": "salt$abc"},
        "user-john": {"_id": "user-john", "username": "John", "hashedPassword": "salt$def"},
    }


@pytest.fixture
def resolver(users):
    def resolve(collection: str, record_id: str) -> dict[str, Any]:
        if collection != "users":
            raise NotFoundError(f"Collection does not exist: {collection}")
        if record_id not in users:
            raise NotFoundError(f"Entry does not exist: {record_id}")
        return dict(users[record_id])

    return resolve


class TestLoad:
    def test_parse_directive(self):
        assert RelationLoad.parse("author=_ownerId:users") == RelationLoad(
            alias="author", source_field="_ownerId", collection="users"
        )

    @pytest.mark.parametrize("directive", ["author", "author=_ownerId", "=x:users"])
    def test_invalid_directive(self, books, directive):
        with pytest.raises(RequestError, match="Invalid load directive"):
            run(books, load=directive)

    def test_embeds_related_without_password_hash(self, books, resolver):
        result = run(books, resolver, load="owner=_ownerId:users", pageSize="2")

        assert result[0]["owner"] == {"_id": "user-ivan", "username": "Ivan"}
        assert result[1]["owner"]["username"] == "John"

    def test_single_record(self, books, resolver):
        result = run(books[0], resolver, load="owner=_ownerId:users")

        assert result["owner"]["username"] == "Ivan"

    def test_missing_source_field(self, resolver):
        result = run([{"_id": "x"}], resolver, load="owner=_ownerId:users")

        assert result == [{"_id": "x", "owner": None}]

    def test_missing_related_record(self, resolver):
        with pytest.raises(NotFoundError):
            run([{"_id": "x", "_ownerId": "ghost"}], resolver, load="owner=_ownerId:users")

    def test_load_runs_after_select(self, books, resolver):
        result = run(books, resolver, select="title", load="owner=_ownerId:users")

        assert result[0] == {"title": "Dune", "owner": None}
