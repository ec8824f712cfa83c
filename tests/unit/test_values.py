"""Tests for the closed JSON value model."""

import pytest

from docstore.values import copy_record, deep_copy, is_number


def test_deep_copy_shares_no_structure():
    original = {"tags": ["a", "b"], "meta": {"pages": 412}}
    copied = deep_copy(original)

    copied["tags"].append("c")
    copied["meta"]["pages"] = 1

    assert original == {"tags": ["a", "b"], "meta": {"pages": 412}}


def test_deep_copy_turns_tuples_into_lists():
    assert deep_copy({"pair": (1, 2)}) == {"pair": [1, 2]}


@pytest.mark.parametrize("value", [{1, 2}, object(), b"bytes"])
def test_deep_copy_rejects_non_json_values(value):
    with pytest.raises(ValueError):
        deep_copy({"field": value})


def test_deep_copy_rejects_non_string_keys():
    with pytest.raises(ValueError, match="Field names must be strings"):
        deep_copy({1: "one"})


def test_copy_record_requires_object():
    with pytest.raises(ValueError, match="JSON object"):
        copy_record(["not", "a", "record"])


def test_copy_record_returns_an_independent_record():
    record = {"title": "Dune", "tags": ["sf"]}
    copied = copy_record(record)

    copied["tags"].append("classic")

    assert copied == {"title": "Dune", "tags": ["sf", "classic"]}
    assert record["tags"] == ["sf"]


@pytest.mark.parametrize(
    ("value", "expected"),
    [(1, True), (2.5, True), (True, False), ("3", False), (None, False)],
)
def test_is_number(value, expected):
    assert is_number(value) is expected
